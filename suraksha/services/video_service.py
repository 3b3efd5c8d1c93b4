"""
Video processing service.
Samples keyframes from a video and packs them into a single sprite-sheet image,
so the model sees several moments of the clip in one inline payload.
"""

import logging
import math
import os
import tempfile
from dataclasses import dataclass
from io import BytesIO
from typing import Any, List, Optional

import numpy as np
from moviepy import VideoFileClip
from PIL import Image

from suraksha.config import settings
from suraksha.schemas.analyze_schemas import MediaPayload
from suraksha.services.media_service import encode_payload
from suraksha.utils.errors import MediaError
from suraksha.utils.logging_config import timed_step

logger = logging.getLogger(__name__)


@dataclass
class SpriteSheet:
    payload: MediaPayload
    timestamps: List[float]
    frame_width: int
    frame_height: int

    @property
    def frame_count(self) -> int:
        return len(self.timestamps)


def sample_timestamps(duration: Optional[float], count: int) -> List[float]:
    """
    Centers of `count` equal slices of the clip: duration * (2i+1) / (2*count).
    Never lands on the first or last frame.
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    if duration is None or not math.isfinite(duration) or duration <= 0:
        raise MediaError("Could not determine the video duration.")
    return [duration * (2 * i + 1) / (2 * count) for i in range(count)]


def capture_keyframes(clip: Any, timestamps: List[float]) -> List[Image.Image]:
    """Capture one frame per timestamp, strictly one after another."""
    frames: List[Image.Image] = []
    for t in timestamps:
        try:
            frame = clip.get_frame(t)
        except Exception as e:  # decoder errors vary by container and codec
            logger.warning(f"Failed to extract frame at {t:.2f}s: {e}")
            raise MediaError(f"Could not capture a video frame at {t:.2f}s.") from e
        frames.append(Image.fromarray(np.asarray(frame, dtype=np.uint8)).convert("RGB"))
    return frames


def build_sprite_sheet(frames: List[Image.Image]) -> Image.Image:
    """Concatenate frames left to right. Output is len(frames) * w by h of the first frame."""
    if not frames:
        raise MediaError("No video frames were captured.")

    width, height = frames[0].size
    sheet = Image.new("RGB", (width * len(frames), height))
    for index, frame in enumerate(frames):
        if frame.size != (width, height):
            frame = frame.resize((width, height))
        sheet.paste(frame, (width * index, 0))
    return sheet


def encode_jpeg(image: Image.Image, quality: Optional[int] = None) -> MediaPayload:
    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=quality or settings.sprite_jpeg_quality)
    return encode_payload(buffer.getvalue(), "image/jpeg", width=image.width, height=image.height)


def extract_sprite_sheet(clip: Any, count: int) -> SpriteSheet:
    timestamps = sample_timestamps(clip.duration, count)
    frames = capture_keyframes(clip, timestamps)
    sheet = build_sprite_sheet(frames)
    width, height = frames[0].size
    return SpriteSheet(
        payload=encode_jpeg(sheet),
        timestamps=timestamps,
        frame_width=width,
        frame_height=height,
    )


@timed_step("video")
def video_to_sprite_sheet(data: bytes, count: Optional[int] = None, suffix: str = ".mp4") -> SpriteSheet:
    """
    Decode an uploaded video and return its keyframe sprite sheet.

    The same bytes and count always produce the same timestamps; they depend
    only on the clip duration.
    """
    count = count or settings.video_keyframe_count

    # moviepy needs a real file path
    temp_video = tempfile.NamedTemporaryFile(delete=False, suffix=suffix)
    temp_video.write(data)
    temp_video.close()

    try:
        try:
            clip = VideoFileClip(temp_video.name, audio=False)
        except Exception as e:
            logger.warning(f"Error opening video: {e}")
            raise MediaError("Could not decode the uploaded video.") from e

        try:
            return extract_sprite_sheet(clip, count)
        finally:
            clip.close()
    finally:
        if os.path.exists(temp_video.name):
            os.unlink(temp_video.name)
