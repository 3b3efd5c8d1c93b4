"""
Chat assistant with a single tool: fetch the user's recent analysis history.

A chat turn moves through
    IDLE -> AWAITING_MODEL -> DIRECT_ANSWER
    IDLE -> AWAITING_MODEL -> TOOL_INVOKED -> TOOL_RESULT -> FINAL_ANSWER
with at most one tool round. The tool is only offered, and only dispatched,
when the request carries a user id.
"""

import json
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from suraksha.schemas.analyze_schemas import HistoryRecord
from suraksha.schemas.chat_schemas import ChatAnswer, ChatResponse, HistoryToolArgs
from suraksha.services import prompts
from suraksha.services.history_service import AnalysisResultStore, recent_records
from suraksha.services.llm_client import LLMClient, parse_structured
from suraksha.utils.errors import ModelCallError, ModelContractError
from suraksha.utils.logging_config import StructuredLogger, metrics

logger = StructuredLogger("suraksha.chat")


HISTORY_TOOL_NAME = "getAnalysisHistory"

HISTORY_TOOL = {
    "type": "function",
    "function": {
        "name": HISTORY_TOOL_NAME,
        "description": "Retrieves the most recent analysis history for a given user.",
        "parameters": {
            "type": "object",
            "properties": {
                "userId": {"type": "string", "description": "The ID of the user."},
                "count": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "The number of history items to retrieve. Defaults to 5.",
                },
            },
            "required": ["userId"],
        },
    },
}

REPHRASE_FALLBACK = "I'm not sure how to respond to that. Could you please rephrase your question?"
TROUBLE_FALLBACK = "I'm sorry, I'm having trouble thinking right now. Please try asking again."


def history_found_message(count: int) -> str:
    return f"I found {count} items in your recent history."


class ChatState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    DIRECT_ANSWER = "direct_answer"
    TOOL_INVOKED = "tool_invoked"
    TOOL_RESULT = "tool_result"
    FINAL_ANSWER = "final_answer"


class ChatToolBridge:
    """The one callback the model may invoke mid-conversation."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_recent_history(self, user_id: Optional[str], count: int = 5) -> List[HistoryRecord]:
        if not user_id:
            logger.warning("History tool called without a user id")
            return []
        db = self.session_factory()
        try:
            return recent_records(AnalysisResultStore(db), user_id, count)
        finally:
            db.close()


class ChatTurn:
    """State of one ask() call."""

    def __init__(self):
        self.state = ChatState.IDLE
        self.transitions: List[ChatState] = [ChatState.IDLE]

    def advance(self, state: ChatState) -> None:
        self.state = state
        self.transitions.append(state)


def _tool_call_to_message(call: Any) -> Dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.function.name, "arguments": call.function.arguments},
    }


def _parse_tool_args(call: Any) -> HistoryToolArgs:
    try:
        return HistoryToolArgs.model_validate(json.loads(call.function.arguments or "{}"))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.info("Ignoring malformed history tool arguments", error=str(e))
        return HistoryToolArgs()


def _extract_answer(content: Optional[str]) -> str:
    try:
        return parse_structured(content, ChatAnswer).answer.strip()
    except ModelContractError:
        return ""


class ChatService:
    def __init__(self, llm: LLMClient, bridge: ChatToolBridge):
        self.llm = llm
        self.bridge = bridge

    def ask(self, prompt: str, user_id: Optional[str] = None) -> ChatResponse:
        turn = ChatTurn()
        history: Optional[List[HistoryRecord]] = None
        metrics.increment("chat.total")

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": prompts.CHAT_PROMPT},
            {"role": "user", "content": prompts.render_chat_input(prompt, user_id)},
        ]
        tools = [HISTORY_TOOL] if user_id else None

        try:
            turn.advance(ChatState.AWAITING_MODEL)
            message = self.llm.chat(messages, tools=tools)

            tool_calls = []
            if user_id:
                tool_calls = [
                    call for call in (getattr(message, "tool_calls", None) or [])
                    if call.function.name == HISTORY_TOOL_NAME
                ]

            if not tool_calls:
                turn.advance(ChatState.DIRECT_ANSWER)
                answer = _extract_answer(message.content)
                return ChatResponse(answer=answer or REPHRASE_FALLBACK)

            turn.advance(ChatState.TOOL_INVOKED)
            args = _parse_tool_args(tool_calls[0])
            # Always the authenticated user, whatever id the model asked for.
            history = self.bridge.get_recent_history(user_id, args.count)
            metrics.increment("chat.tool_calls")

            turn.advance(ChatState.TOOL_RESULT)
            payload = json.dumps([record.model_dump(mode="json", by_alias=True) for record in history])
            messages.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [_tool_call_to_message(call) for call in tool_calls],
                }
            )
            for call in tool_calls:
                messages.append({"role": "tool", "tool_call_id": call.id, "content": payload})

            final = self.llm.chat(messages)
            turn.advance(ChatState.FINAL_ANSWER)
            answer = _extract_answer(final.content)
            return ChatResponse(answer=answer or history_found_message(len(history)), history=history)

        except (ModelCallError, ModelContractError) as e:
            metrics.increment("chat.errors")
            logger.warning(
                "Chat model call failed",
                error=e.message,
                state=turn.state.value,
            )
            return ChatResponse(answer=TROUBLE_FALLBACK, history=history)

        finally:
            logger.debug("Chat turn finished", transitions=[s.value for s in turn.transitions])