"""Size-targeted image compression with pyvips.

JPEG sources are re-encoded with a binary search over a fixed quality ladder,
keeping the highest quality that fits the target. PNG sources are palette
quantised. Other supported formats are re-encoded as JPEG. A result larger
than the source is discarded in favour of the source bytes.

These functions block; the local processing service runs them on a worker
thread and forwards `progress` to the pipeline's event loop.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pyvips  # type: ignore

from image_compressor.format_utils import format_size
from image_compressor.logger import get_logger

from .errors import HydrationError, ProcessingError
from .records import CompressResult, HydrationResult

_logger = get_logger("compressor")

JPEG_QUALITIES = (25, 35, 45, 55, 65, 75, 85)
JPEG_FALLBACK_QUALITY = 25
_EXPECTED_ATTEMPTS = 4

JPEG_EXTS = {".jpg", ".jpeg"}
PNG_EXTS = {".png"}
REENCODE_EXTS = {".webp", ".bmp", ".gif"}
VALID_EXTS = JPEG_EXTS | PNG_EXTS | REENCODE_EXTS

PREVIEW_MAX_DIM = 256
PREVIEW_QUALITY = 75

Progress = Callable[[int], None]


def _noop_progress(_: int) -> None:
    pass


def _to_8bit_rgb(image: pyvips.Image, *, keep_alpha: bool) -> pyvips.Image:
    if image.interpretation in ("rgb16", "grey16"):
        image = image.colourspace("srgb" if image.bands >= 3 else "b-w")
    if image.hasalpha() and not keep_alpha:
        image = image.flatten(background=[255, 255, 255])
    if image.format != "uchar":
        image = image.cast("uchar")
    return image


def _encode_jpeg(image: pyvips.Image, quality: int) -> bytes:
    return image.jpegsave_buffer(Q=quality, optimize_coding=True)


def compress_jpeg(image: pyvips.Image, target_size: int, progress: Progress = _noop_progress) -> bytes:
    """Binary search `JPEG_QUALITIES` for the highest quality within `target_size` bytes."""
    rgb = _to_8bit_rgb(image, keep_alpha=False)
    left, right = 0, len(JPEG_QUALITIES) - 1
    best: bytes | None = None
    attempts = 0
    progress(0)
    while left <= right:
        mid = (left + right) // 2
        quality = JPEG_QUALITIES[mid]
        attempts += 1
        progress(min(90, attempts * 100 // _EXPECTED_ATTEMPTS))

        data = _encode_jpeg(rgb, quality)
        _logger.debug("jpeg try: quality=%s size=%s", quality, format_size(len(data)))
        if len(data) <= target_size:
            best = data
            left = mid + 1
        else:
            right = mid - 1
    progress(100)
    if best is not None:
        return best
    _logger.debug("jpeg: no quality fits, using %s", JPEG_FALLBACK_QUALITY)
    return _encode_jpeg(rgb, JPEG_FALLBACK_QUALITY)


def compress_png(image: pyvips.Image, progress: Progress = _noop_progress) -> bytes:
    """Quantise to a 256 colour palette with full dithering."""
    progress(0)
    rgba = _to_8bit_rgb(image, keep_alpha=True)
    progress(40)
    data = rgba.pngsave_buffer(palette=True, Q=100, dither=1.0, compression=9)
    progress(100)
    return data


def compress_file(path: str, target_size_kb: int, progress: Progress = _noop_progress) -> CompressResult:
    """Compress the image at `path` towards `target_size_kb` kilobytes.

    Progress runs 0 (start), 10 (read), 20/30 (decode), 40..90 (encode), 100.
    Raises ProcessingError with a user-facing message on failure.
    """
    progress(0)
    src = Path(path)
    try:
        original = src.read_bytes()
    except OSError as e:
        raise ProcessingError(f"Failed to read image: {e}") from e
    original_size = len(original)
    progress(10)

    target_size = int(target_size_kb) * 1024
    if original_size <= target_size:
        _logger.debug("%s already within target (%s)", src.name, format_size(original_size))
        progress(100)
        return CompressResult(original_size, original_size, original)

    ext = src.suffix.lower()
    if ext not in VALID_EXTS:
        raise ProcessingError(f"Unsupported image format: {ext.lstrip('.') or '(none)'}")

    progress(20)
    try:
        image = pyvips.Image.new_from_buffer(original, "").autorot()
    except pyvips.Error as e:
        raise ProcessingError(f"Failed to decode image: {e}") from e
    progress(30)
    _logger.debug("%s: %sx%s %s", src.name, image.width, image.height, format_size(original_size))

    progress(40)

    def scaled(p: int) -> None:
        progress(40 + p // 2)

    try:
        if ext in PNG_EXTS:
            data = compress_png(image, scaled)
        else:
            data = compress_jpeg(image, target_size, scaled)
    except pyvips.Error as e:
        raise ProcessingError(f"Failed to encode image: {e}") from e
    progress(90)

    if len(data) > original_size:
        _logger.debug(
            "%s: result larger (%s > %s), keeping original",
            src.name,
            format_size(len(data)),
            format_size(original_size),
        )
        data = original
    else:
        _logger.debug(
            "%s: %s -> %s (-%.1f%%)",
            src.name,
            format_size(original_size),
            format_size(len(data)),
            (1.0 - len(data) / original_size) * 100.0,
        )
    progress(100)
    return CompressResult(original_size, len(data), data)


def make_preview(data: bytes, max_dim: int = PREVIEW_MAX_DIM) -> bytes | None:
    """JPEG thumbnail bounded by `max_dim`, or None when the bytes cannot be decoded."""
    try:
        thumb = pyvips.Image.thumbnail_buffer(data, max_dim)
        return _encode_jpeg(_to_8bit_rgb(thumb, keep_alpha=False), PREVIEW_QUALITY)
    except pyvips.Error as e:
        _logger.debug("preview failed: %s", e)
        return None


def hydrate_file(path: str) -> HydrationResult:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise HydrationError(f"Failed to read {path}: {e}") from e
    return HydrationResult(size_bytes=len(data), preview=make_preview(data))
