"""
QR code decoding.

A decode either yields text or it doesn't; unreadable images and images with
no symbol both come back as None, never as an exception.
"""

import logging
from io import BytesIO
from typing import Optional

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from suraksha.schemas.analyze_schemas import ContentCategory, QrDecodeResult
from suraksha.utils.preprocessing import is_absolute_url

logger = logging.getLogger(__name__)


def _load_grayscale(image_bytes: bytes) -> Optional[np.ndarray]:
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return np.array(img.convert("L"))
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as e:
        logger.debug(f"QR image could not be opened: {e}")
        return None


def decode_qr(image_bytes: bytes) -> Optional[str]:
    """Return the text of the first QR symbol found in the image, or None."""
    pixels = _load_grayscale(image_bytes)
    if pixels is None or pixels.size == 0:
        return None

    detector = cv2.QRCodeDetector()
    try:
        data, points, _ = detector.detectAndDecode(pixels)
        if data:
            return data

        ok, decoded_info, _, _ = detector.detectAndDecodeMulti(pixels)
        if ok:
            for text in decoded_info:
                if text:
                    return text
    except cv2.error as e:
        logger.debug(f"OpenCV could not decode QR image: {e}")

    return None


def classify_decoded(text: str) -> QrDecodeResult:
    """Absolute URLs go to URL analysis, everything else is treated as text."""
    decoded = text.strip()
    if is_absolute_url(decoded):
        return QrDecodeResult(category=ContentCategory.URL, decoded=decoded, url_value=decoded)
    return QrDecodeResult(category=ContentCategory.TEXT, decoded=decoded, raw_content=decoded)


def decode_and_classify(image_bytes: bytes) -> Optional[QrDecodeResult]:
    text = decode_qr(image_bytes)
    if not text or not text.strip():
        logger.info("No QR symbol decoded from uploaded image")
        return None
    return classify_decoded(text)
