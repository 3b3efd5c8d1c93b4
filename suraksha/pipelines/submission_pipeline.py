"""
Submission pipeline: raw form input -> normalized Submission.

Uploaded files are read and normalized here (images validated, videos reduced
to a keyframe sprite sheet, QR codes decoded) so that the router only ever
sees inline payloads.
"""

import logging
import os
from typing import Optional

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from suraksha.config import settings
from suraksha.pipelines.router import check_payload_fields, check_source_hint, validate_submission
from suraksha.schemas.analyze_schemas import ContentCategory, SourceHint, Submission
from suraksha.services.media_service import load_image, read_upload_bytes
from suraksha.services.qr_service import decode_and_classify
from suraksha.services.video_service import video_to_sprite_sheet
from suraksha.utils.errors import InvalidSubmissionError
from suraksha.utils.logging_config import StructuredLogger

logger = StructuredLogger("suraksha.pipeline")


def parse_source_hint(value: Optional[str]) -> Optional[SourceHint]:
    if value is None or not value.strip():
        return None
    try:
        return SourceHint(value.strip().lower())
    except ValueError:
        allowed = ", ".join(h.value for h in SourceHint)
        raise InvalidSubmissionError("source_hint", f"source_hint must be one of: {allowed}.")


def parse_category(value: Optional[str]) -> ContentCategory:
    try:
        return ContentCategory((value or "").strip().lower())
    except ValueError:
        allowed = ", ".join(c.value for c in ContentCategory)
        raise InvalidSubmissionError("type", f"type must be one of: {allowed}.")


def _has_file(upload_file: Optional[UploadFile]) -> bool:
    return upload_file is not None and bool(upload_file.filename)


async def build_submission(
    category: ContentCategory,
    text: Optional[str] = None,
    url: Optional[str] = None,
    upload_file: Optional[UploadFile] = None,
    source_hint: Optional[SourceHint] = None,
) -> Submission:
    """
    Build a Submission for a text, url, image or video request.
    QR codes go through resolve_qr_submission instead.

    Stray payloads and mismatched hints are rejected before any upload is
    read or decoded.
    """
    has_file = _has_file(upload_file)
    check_payload_fields(category, text=text, url=url, has_file=has_file)
    filename = upload_file.filename if has_file else None
    submission = Submission(
        category=category,
        raw_content=text,
        url_value=url,
        source_hint=source_hint,
        filename=filename,
    )
    check_source_hint(submission)

    if category in (ContentCategory.IMAGE, ContentCategory.VIDEO) and filename:
        data = await read_upload_bytes(upload_file)
        if category == ContentCategory.IMAGE:
            media = load_image(data, settings.image_formats_list)
        else:
            suffix = os.path.splitext(filename)[1] or ".mp4"
            sheet = await run_in_threadpool(video_to_sprite_sheet, data, None, suffix)
            logger.info(
                "Video reduced to sprite sheet",
                frames=sheet.frame_count,
                frame_width=sheet.frame_width,
                frame_height=sheet.frame_height,
            )
            media = sheet.payload
        submission = submission.model_copy(update={"media": media})

    return submission


async def resolve_qr_submission(
    upload_file: Optional[UploadFile],
    text: Optional[str] = None,
    url: Optional[str] = None,
    source_hint: Optional[SourceHint] = None,
) -> Optional[Submission]:
    """
    Decode an uploaded QR image into a text or url Submission tagged with a
    qrcode source hint. Returns None when no symbol could be decoded.
    """
    has_file = _has_file(upload_file)
    check_payload_fields(ContentCategory.QRCODE, text=text, url=url, has_file=has_file)
    check_source_hint(Submission(category=ContentCategory.QRCODE, source_hint=source_hint))
    filename = upload_file.filename if has_file else None
    if not filename:
        validate_submission(Submission(category=ContentCategory.QRCODE))

    data = await read_upload_bytes(upload_file)
    # Format check only; the decoded text is what gets analyzed.
    load_image(data, settings.qrcode_formats_list)

    decoded = await run_in_threadpool(decode_and_classify, data)
    if decoded is None:
        return None

    logger.info("QR code decoded", category=decoded.category.value, length=len(decoded.decoded))
    return Submission(
        category=decoded.category,
        raw_content=decoded.raw_content,
        url_value=decoded.url_value,
        source_hint=SourceHint.QRCODE,
        filename=filename,
        from_qr=True,
    )
