"""
Media normalization.
Turns uploaded files into MIME-typed base64 payloads the model client can inline.
"""

import base64
import logging
from io import BytesIO
from typing import Iterable

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from suraksha.config import settings
from suraksha.schemas.analyze_schemas import DATA_URI_RE, MediaPayload
from suraksha.utils.errors import MediaError

logger = logging.getLogger(__name__)


PIL_FORMAT_TO_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}


def encode_payload(data: bytes, mime_type: str, width: int | None = None, height: int | None = None) -> MediaPayload:
    return MediaPayload(
        mime_type=mime_type,
        data=base64.b64encode(data).decode("ascii"),
        width=width,
        height=height,
    )


def to_data_uri(payload: MediaPayload) -> str:
    return payload.data_uri


def parse_data_uri(value: str) -> MediaPayload:
    """Inverse of to_data_uri. Raises MediaError for anything that is not a base64 data URI."""
    match = DATA_URI_RE.match(value or "")
    if not match:
        raise MediaError("Not a base64 data URI.")
    return MediaPayload(mime_type=match.group("mime"), data=match.group("data"))


async def read_upload_bytes(upload_file: UploadFile) -> bytes:
    """Read an uploaded file fully, enforcing the configured size limit."""
    try:
        data = await upload_file.read()
    except OSError as e:
        logger.warning(f"Failed to read upload {upload_file.filename!r}: {e}")
        raise MediaError("Could not read the uploaded file.") from e

    if not data:
        raise MediaError("Uploaded file is empty.")
    if len(data) > settings.max_upload_bytes:
        raise MediaError(f"Uploaded file is larger than {settings.max_upload_mb} MB.")
    return data


def load_image(data: bytes, allowed_formats: Iterable[str]) -> MediaPayload:
    """
    Validate that data is a readable image in one of allowed_formats and
    return it as a payload. The MIME type comes from the decoded format,
    not from whatever the client claimed.
    """
    allowed = {fmt.upper() for fmt in allowed_formats}
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = (img.format or "").upper()
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as e:
        logger.info(f"Rejected unreadable image upload: {e}")
        raise MediaError("Could not read the uploaded image.") from e

    if fmt not in allowed or fmt not in PIL_FORMAT_TO_MIME:
        raise MediaError(
            f"Unsupported image format '{fmt or 'unknown'}'. Use one of: {', '.join(sorted(allowed))}."
        )

    return encode_payload(data, PIL_FORMAT_TO_MIME[fmt], width=width, height=height)
