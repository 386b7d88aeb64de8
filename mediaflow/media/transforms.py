"""
Image Transform Adapter.

Synchronous, CPU-bound image work: thumbnailing, WebP optimization,
responsive renditions and metadata extraction. Everything here operates
on bytes; the orchestrator owns reading and writing the object store.
"""

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import imagehash
from PIL import Image, ExifTags, ImageOps, UnidentifiedImageError

from mediaflow.common.errors import PermanentError, RetryableError

logger = logging.getLogger(__name__)

_EXT_RE = re.compile(r"(\.\w+)$")

# Pillow save format per file extension
_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
    ".gif": "GIF",
}

_CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

# Image uploads are limited to what load() can decode
IMAGE_CONTENT_TYPES = frozenset(_CONTENT_TYPES.values())

# EXIF sub-IFDs that carry the camera fields
_EXIF_IFD = 0x8769
_GPS_IFD = 0x8825


class ImageTransformError(RetryableError):
    """Exception raised when an image cannot be re-encoded."""
    pass


class ImageDecodeError(PermanentError):
    """The stored source is not an image this service can read."""
    pass


class ExifUnavailable(Exception):
    """The image carries no parseable EXIF block."""
    pass


@dataclass
class DerivedImage:
    key: str
    data: bytes
    content_type: str
    width: int
    height: int


def _replace_ext(key: str, suffix: str) -> str:
    if _EXT_RE.search(key):
        return _EXT_RE.sub(suffix, key)
    return f"{key}{suffix}"


def _ext(key: str) -> str:
    match = _EXT_RE.search(key)
    return match.group(1).lower() if match else ""


def thumbnail_key(key: str) -> str:
    """``image/abc.png`` -> ``image/abc_thumbnail.jpg``"""
    return _replace_ext(key, "_thumbnail.jpg")


def optimized_key(key: str) -> str:
    return _replace_ext(key, "_optimized.webp")


def rendition_key(key: str, width: int) -> str:
    ext = _ext(key) or ".jpg"
    if ext not in _FORMATS:
        ext = ".jpg"
    return _replace_ext(key, f"_{width}px{ext}")


def _json_safe(value: Any) -> Any:
    if isinstance(value, (str, int, bool)) or value is None:
        return value
    if isinstance(value, float):
        return round(value, 6)
    if isinstance(value, bytes):
        try:
            return value.decode("ascii").strip("\x00").strip() or None
        except UnicodeDecodeError:
            return None
    if isinstance(value, (tuple, list)):
        return [_json_safe(v) for v in value]
    try:
        # IFDRational and friends
        return round(float(value), 6)
    except (TypeError, ValueError):
        return str(value)


class ImageTransformer:
    """
    Pillow-based image transforms.

    Output sizes are fixed by configuration so the worst-case CPU cost of
    one ingest is bounded.
    """

    def __init__(
        self,
        thumbnail_size: Tuple[int, int] = (200, 200),
        optimized_width: int = 800,
        optimized_quality: int = 80,
        rendition_widths: Optional[List[int]] = None,
        max_source_pixels: int = 50_000_000,
    ):
        self.thumbnail_size = tuple(thumbnail_size)
        self.optimized_width = optimized_width
        self.optimized_quality = optimized_quality
        self.rendition_widths = sorted(set(rendition_widths or [320, 640, 1280]))
        self.max_source_pixels = max_source_pixels

    def load(self, data: bytes) -> Image.Image:
        """
        Decode image bytes.

        Raises:
            ImageDecodeError: undecodable input or too many pixels
        """
        try:
            image = Image.open(BytesIO(data))
            width, height = image.size
            if width * height > self.max_source_pixels:
                raise ImageDecodeError(
                    f"Image {width}x{height} exceeds {self.max_source_pixels} pixels")
            image.load()
            return image
        except ImageDecodeError:
            raise
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
            raise ImageDecodeError(f"Cannot decode image: {e}") from e

    def _encode(self, image: Image.Image, fmt: str, **options) -> bytes:
        if fmt == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = BytesIO()
        try:
            image.save(buffer, format=fmt, **options)
        except (OSError, ValueError) as e:
            raise ImageTransformError(f"Cannot encode {fmt}: {e}") from e
        return buffer.getvalue()

    def _resize_to_width(self, image: Image.Image, width: int) -> Image.Image:
        height = max(1, round(image.height * width / image.width))
        return image.resize((width, height), Image.Resampling.LANCZOS)

    def thumbnail(self, image: Image.Image, key: str) -> DerivedImage:
        """Center-cropped square JPEG thumbnail."""
        oriented = ImageOps.exif_transpose(image)
        thumb = ImageOps.fit(oriented, self.thumbnail_size, Image.Resampling.LANCZOS)
        data = self._encode(thumb, "JPEG", quality=85, optimize=True)
        return DerivedImage(thumbnail_key(key), data, "image/jpeg", thumb.width, thumb.height)

    def optimize(self, image: Image.Image, key: str) -> DerivedImage:
        """Re-encode to WebP at the configured width."""
        oriented = ImageOps.exif_transpose(image)
        resized = self._resize_to_width(oriented, self.optimized_width)
        if resized.mode not in ("RGB", "RGBA"):
            resized = resized.convert("RGBA" if "A" in resized.getbands() else "RGB")
        data = self._encode(resized, "WEBP", quality=self.optimized_quality)
        return DerivedImage(optimized_key(key), data, "image/webp", resized.width, resized.height)

    def renditions(self, image: Image.Image, key: str) -> List[DerivedImage]:
        """One resized copy per ladder width, in the source's format."""
        fmt = _FORMATS.get(_ext(key), "JPEG")
        oriented = ImageOps.exif_transpose(image)
        results = []
        for width in self.rendition_widths:
            resized = self._resize_to_width(oriented, width)
            data = self._encode(resized, fmt)
            results.append(DerivedImage(
                rendition_key(key, width), data, _CONTENT_TYPES[fmt],
                resized.width, resized.height))
        return results

    def extract_exif(self, image: Image.Image) -> Dict[str, Any]:
        """
        Camera fields from the EXIF block, including the Exif and GPS IFDs.

        Raises:
            ExifUnavailable: no EXIF data present
        """
        try:
            exif = image.getexif()
        except Exception as e:
            raise ExifUnavailable(f"EXIF parsing failed: {e}") from e
        if not exif:
            raise ExifUnavailable("No EXIF data")

        tags: Dict[str, Any] = {}
        for tag_id, value in exif.items():
            if tag_id in (_EXIF_IFD, _GPS_IFD):
                continue
            tags[ExifTags.TAGS.get(tag_id, str(tag_id))] = _json_safe(value)

        for tag_id, value in exif.get_ifd(_EXIF_IFD).items():
            name = ExifTags.TAGS.get(tag_id, str(tag_id))
            if name == "MakerNote":
                continue
            tags[name] = _json_safe(value)

        gps = exif.get_ifd(_GPS_IFD)
        if gps:
            tags["GPSInfo"] = {
                ExifTags.GPSTAGS.get(tag_id, str(tag_id)): _json_safe(value)
                for tag_id, value in gps.items()
            }

        tags = {k: v for k, v in tags.items() if v is not None}
        if not tags:
            raise ExifUnavailable("EXIF block is empty")
        return tags

    def probe(self, image: Image.Image, data: bytes) -> Dict[str, Any]:
        """Generic image metadata, available for any decodable image."""
        return {
            "format": image.format,
            "width": image.width,
            "height": image.height,
            "mode": image.mode,
            "size_bytes": len(data),
            "has_alpha": "A" in image.getbands(),
            "perceptual_hash": str(imagehash.phash(image)),
        }

    def extract_metadata(self, image: Image.Image, data: bytes) -> Dict[str, Any]:
        """
        EXIF fields when present, otherwise the generic probe.

        The result always carries ``source`` ("exif" or "probe").
        """
        try:
            exif = self.extract_exif(image)
            info = self.probe(image, data)
            info.update({"source": "exif", "exif": exif})
            return info
        except ExifUnavailable as e:
            logger.debug(f"Falling back to generic probe: {e}")
        info = self.probe(image, data)
        info["source"] = "probe"
        return info
