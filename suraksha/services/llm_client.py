import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

from openai import APITimeoutError, OpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from suraksha.config import settings
from suraksha.schemas.analyze_schemas import (
    ContentAnalysisRequest,
    ContentAnalysisResponse,
    UrlAnalysisRequest,
    UrlAnalysisResponse,
)
from suraksha.services import prompts
from suraksha.utils.errors import ModelCallError, ModelContractError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def parse_structured(content: Optional[str], schema: Type[T]) -> T:
    """
    Validate a JSON model reply against schema.
    Anything that does not fit is a ModelContractError; nothing is coerced.
    """
    if not content:
        raise ModelContractError("Model returned an empty response.")
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Model returned non-JSON output for {schema.__name__}: {e}")
        raise ModelContractError(f"Model output is not valid JSON: {e}") from e
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Model output failed {schema.__name__} validation: {e.errors()}")
        raise ModelContractError(f"Model output does not match {schema.__name__}.") from e


class LLMClient:
    """
    Wrapper around the OpenAI client for scam, deepfake and URL verdicts.

    One call per request: the SDK's own retries are disabled and every call is
    bounded by settings.openai_timeout.
    """

    def __init__(self, model: str | None = None, client: Any = None):
        self.client = client or OpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.openai_timeout,
            max_retries=0,
        )
        self.model = model or settings.openai_model

    def _create(self, messages: List[Dict[str, Any]], **kwargs) -> Any:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=settings.openai_max_tokens,
                **kwargs,
            )
        except APITimeoutError as e:
            logger.warning(f"OpenAI call timed out after {settings.openai_timeout}s")
            raise ModelCallError(f"Model call timed out after {settings.openai_timeout}s.") from e
        except OpenAIError as e:
            logger.warning(f"OpenAI API error: {e}")
            raise ModelCallError(f"Model call failed: {type(e).__name__}") from e

        if not response.choices:
            raise ModelContractError("Model returned no choices.")
        return response.choices[0].message

    def complete_structured(self, system_msg: str, user_content: Any, schema: Type[T]) -> T:
        message = self._create(
            [
                {"role": "system", "content": system_msg},
                {"role": "user", "content": user_content},
            ],
            response_format={"type": "json_object"},
        )
        return parse_structured(message.content, schema)

    def score_content(self, request: ContentAnalysisRequest) -> ContentAnalysisResponse:
        user_content: List[Dict[str, Any]] = [
            {"type": "text", "text": prompts.render_content_input(request)},
        ]
        if request.photo_data_uri:
            user_content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": request.photo_data_uri, "detail": "high"},
                }
            )
        return self.complete_structured(prompts.CONTENT_ANALYSIS_PROMPT, user_content, ContentAnalysisResponse)

    def score_url(self, request: UrlAnalysisRequest) -> UrlAnalysisResponse:
        """LLM-based URL verdict, judged from the URL string alone (no page fetch)."""
        return self.complete_structured(
            prompts.URL_ANALYSIS_PROMPT,
            prompts.render_url_input(request),
            UrlAnalysisResponse,
        )

    def chat(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> Any:
        """One chat completion turn. Returns the assistant message (content and/or tool_calls)."""
        kwargs: Dict[str, Any] = {"response_format": {"type": "json_object"}}
        if tools:
            kwargs["tools"] = tools
        return self._create(messages, **kwargs)
