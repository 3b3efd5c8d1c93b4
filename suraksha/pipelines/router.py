"""
Content classifier router.

Maps a user-chosen category plus its payload to one of the two model request
shapes. Every precondition is checked here, before anything reaches the
model client.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from suraksha.config import settings
from suraksha.schemas.analyze_schemas import (
    AnalysisRequest,
    ContentAnalysisRequest,
    ContentCategory,
    PromptSummary,
    SourceHint,
    Submission,
    UrlAnalysisRequest,
)
from suraksha.services.prompts import VIDEO_FRAMES_INSTRUCTION
from suraksha.utils.errors import InvalidSubmissionError
from suraksha.utils.preprocessing import describe_upload, is_absolute_url, normalize_text, normalize_url

logger = logging.getLogger(__name__)


MEDIA_CATEGORIES = (ContentCategory.IMAGE, ContentCategory.QRCODE, ContentCategory.VIDEO)

MISSING_MEDIA_MESSAGES = {
    ContentCategory.IMAGE: "Please upload an image to analyze.",
    ContentCategory.QRCODE: "Please upload a QR code image to scan.",
    ContentCategory.VIDEO: "Please upload a video to analyze.",
}

UPLOAD_LABELS = {
    ContentCategory.IMAGE: "Image",
    ContentCategory.QRCODE: "QR Code",
    ContentCategory.VIDEO: "Video",
}


def _expected_field(category: ContentCategory) -> str:
    if category == ContentCategory.TEXT:
        return "text"
    if category == ContentCategory.URL:
        return "url"
    return "file"


def _is_set(value) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def check_payload_fields(
    category: ContentCategory,
    text: Optional[str] = None,
    url: Optional[str] = None,
    has_file: bool = False,
) -> None:
    """Reject a payload that does not belong to the chosen category."""
    provided = {"text": _is_set(text), "url": _is_set(url), "file": has_file}
    expected = _expected_field(category)
    for field, present in provided.items():
        if present and field != expected:
            raise InvalidSubmissionError(
                field, f"A '{category.value}' submission cannot also carry a {field} payload."
            )


def check_source_hint(submission: Submission) -> None:
    """
    A hint may only restate what the server already knows. The qrcode hint
    belongs to QR uploads and to content decoded from them; every other hint
    must name the submission's own category.
    """
    hint = submission.source_hint
    if hint is None:
        return
    if hint == SourceHint.QRCODE:
        matches = submission.from_qr or submission.category == ContentCategory.QRCODE
    else:
        matches = hint.value == submission.category.value
    if not matches:
        raise InvalidSubmissionError(
            "source_hint",
            f"source_hint '{hint.value}' does not apply to a '{submission.category.value}' submission.",
        )


def validate_submission(submission: Submission) -> None:
    """Raise InvalidSubmissionError for the first field that fails its category's precondition."""
    category = submission.category
    check_source_hint(submission)

    if category == ContentCategory.TEXT:
        text = normalize_text(submission.raw_content)
        if submission.from_qr:
            if not text:
                raise InvalidSubmissionError("text", "The QR code did not contain any text.")
        elif len(text) < settings.min_text_length:
            raise InvalidSubmissionError(
                "text", f"Content must be at least {settings.min_text_length} characters."
            )
    elif category in MEDIA_CATEGORIES:
        if submission.media is None:
            raise InvalidSubmissionError("file", MISSING_MEDIA_MESSAGES[category])
    elif category == ContentCategory.URL:
        url = normalize_url(submission.url_value)
        if not url:
            raise InvalidSubmissionError("url", "Please enter a URL to scan.")
        if not is_absolute_url(url):
            raise InvalidSubmissionError("url", "Please enter a valid URL, including http:// or https://.")

    check_payload_fields(
        category,
        text=submission.raw_content,
        url=submission.url_value,
        has_file=submission.media is not None,
    )


def _build_request(submission: Submission) -> AnalysisRequest:
    category = submission.category

    if category == ContentCategory.URL:
        return UrlAnalysisRequest(url=normalize_url(submission.url_value))

    if category == ContentCategory.TEXT:
        return ContentAnalysisRequest(
            content=normalize_text(submission.raw_content),
            source=submission.source_hint,
        )

    if category == ContentCategory.VIDEO:
        return ContentAnalysisRequest(
            content=VIDEO_FRAMES_INSTRUCTION,
            photo_data_uri=submission.media.data_uri,
            source=SourceHint.VIDEO,
        )

    default_source = SourceHint.QRCODE if category == ContentCategory.QRCODE else SourceHint.IMAGE
    return ContentAnalysisRequest(
        photo_data_uri=submission.media.data_uri,
        source=submission.source_hint or default_source,
    )


def route_submission(submission: Submission) -> AnalysisRequest:
    validate_submission(submission)
    try:
        request = _build_request(submission)
    except ValidationError as e:
        field = _expected_field(submission.category)
        logger.info(f"Rejected {submission.category.value} submission: {e.errors()}")
        raise InvalidSubmissionError(field, "The submitted content could not be analyzed.") from e

    logger.debug(f"Routed {submission.category.value} submission to {type(request).__name__}")
    return request


def summarize_submission(submission: Submission) -> PromptSummary:
    """Short description of what was submitted, for the history list."""
    category = submission.category
    if category == ContentCategory.TEXT:
        content: Optional[str] = normalize_text(submission.raw_content)
    elif category == ContentCategory.URL:
        content = normalize_url(submission.url_value)
    else:
        content = describe_upload(UPLOAD_LABELS[category], submission.filename)
    return PromptSummary(type=category, content=content or "")
