"""
Video metadata probing.

ffprobe (through ffmpeg-python) is the primary source; OpenCV is used as
a fallback when ffprobe is unavailable or cannot parse the container.
"""

import logging
import os
import tempfile
from fractions import Fraction
from typing import Any, Dict, Optional

import cv2
import ffmpeg

logger = logging.getLogger(__name__)


class VideoProbeError(Exception):
    """Neither ffprobe nor OpenCV could read the video."""
    pass


def _parse_rate(rate: Optional[str]) -> Optional[float]:
    if not rate or rate in ("0/0", "0"):
        return None
    try:
        return round(float(Fraction(rate)), 3)
    except (ValueError, ZeroDivisionError):
        return None


def _rotation(stream: Dict[str, Any]) -> int:
    tags = stream.get("tags") or {}
    if "rotate" in tags:
        try:
            return int(tags["rotate"]) % 360
        except ValueError:
            pass
    for side_data in stream.get("side_data_list") or []:
        if "rotation" in side_data:
            return int(side_data["rotation"]) % 360
    return 0


def _aspect_ratio(width: Optional[int], height: Optional[int],
                  display: Optional[str] = None) -> Optional[str]:
    if display and display not in ("0:1", "N/A"):
        return display
    if not width or not height:
        return None
    ratio = Fraction(width, height)
    return f"{ratio.numerator}:{ratio.denominator}"


class VideoProbe:
    """Extract duration, codec, resolution, bitrate, frame rate and rotation."""

    def probe_bytes(self, data: bytes, suffix: str = ".mp4") -> Dict[str, Any]:
        with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp_file:
            tmp_file.write(data)
            tmp_path = tmp_file.name
        try:
            return self.probe_file(tmp_path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def probe_file(self, path: str) -> Dict[str, Any]:
        try:
            return self._probe_ffmpeg(path)
        except (ffmpeg.Error, FileNotFoundError, KeyError, ValueError) as e:
            logger.warning(f"ffprobe failed for {path}, falling back to OpenCV: {e}")
        return self._probe_opencv(path)

    def _probe_ffmpeg(self, path: str) -> Dict[str, Any]:
        probe = ffmpeg.probe(path)
        fmt = probe.get("format", {})
        video_stream = next(
            (s for s in probe.get("streams", []) if s.get("codec_type") == "video"), None)
        if video_stream is None:
            raise ValueError("No video stream")

        width = int(video_stream["width"]) if video_stream.get("width") else None
        height = int(video_stream["height"]) if video_stream.get("height") else None
        duration = fmt.get("duration") or video_stream.get("duration")
        bitrate = fmt.get("bit_rate") or video_stream.get("bit_rate")

        return {
            "duration": round(float(duration), 3) if duration else None,
            "codec": video_stream.get("codec_name"),
            "width": width,
            "height": height,
            "bitrate": int(bitrate) if bitrate else None,
            "frame_rate": _parse_rate(
                video_stream.get("avg_frame_rate") or video_stream.get("r_frame_rate")),
            "rotation": _rotation(video_stream),
            "aspect_ratio": _aspect_ratio(
                width, height, video_stream.get("display_aspect_ratio")),
            "source": "ffprobe",
        }

    def _probe_opencv(self, path: str) -> Dict[str, Any]:
        cap = cv2.VideoCapture(path)
        try:
            if not cap.isOpened():
                raise VideoProbeError(f"OpenCV cannot open {path}")
            fps = cap.get(cv2.CAP_PROP_FPS)
            frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT)
            width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)) or None
            height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)) or None
            fourcc = int(cap.get(cv2.CAP_PROP_FOURCC))
        finally:
            cap.release()

        codec = "".join(chr((fourcc >> 8 * i) & 0xFF) for i in range(4)).strip() or None
        duration = frame_count / fps if fps > 0 else None
        return {
            "duration": round(duration, 3) if duration else None,
            "codec": codec,
            "width": width,
            "height": height,
            "bitrate": None,
            "frame_rate": round(fps, 3) if fps > 0 else None,
            "rotation": 0,
            "aspect_ratio": _aspect_ratio(width, height),
            "source": "opencv",
        }
