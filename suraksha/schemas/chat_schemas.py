from typing import List, Optional

from pydantic import Field

from suraksha.schemas.analyze_schemas import CamelModel, HistoryRecord


class ChatRequest(CamelModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    user_id: Optional[str] = None  # set when the user is logged in


class ChatResponse(CamelModel):
    answer: str
    history: Optional[List[HistoryRecord]] = None


class ChatAnswer(CamelModel):
    """What the model is asked to return at the end of a chat turn."""
    answer: str = ""


class HistoryToolArgs(CamelModel):
    user_id: Optional[str] = None
    count: int = Field(default=5, ge=1)
