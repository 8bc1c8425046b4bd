"""Avatar image optimisation with Pillow.

Images are shrunk to fit inside a bounding box (aspect ratio preserved,
never upscaled) and re-encoded at a fixed quality.  Any failure yields
``None`` so callers never store a half-processed image.
"""
import io
from typing import Optional

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

logger = structlog.get_logger("devmatch.images")

DEFAULT_MAX_WIDTH = 1024
DEFAULT_MAX_HEIGHT = 1024
DEFAULT_QUALITY = 80

CONTENT_TYPES = {"JPEG": "image/jpeg", "PNG": "image/png"}


def optimize_image(
    data: bytes,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_height: int = DEFAULT_MAX_HEIGHT,
    quality: int = DEFAULT_QUALITY,
    fmt: str = "JPEG",
) -> Optional[bytes]:
    """Resize ``data`` to fit ``max_width`` x ``max_height`` and re-encode.

    Args:
        data: Raw bytes of any format Pillow can read.
        max_width: Bounding-box width in pixels.
        max_height: Bounding-box height in pixels.
        quality: Encoder quality (JPEG only).
        fmt: ``"JPEG"`` or ``"PNG"``.

    Returns:
        Encoded bytes, or ``None`` if the image could not be processed,
        including when its declared dimensions exceed Pillow's pixel cap.
    """
    fmt = fmt.upper()
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            original_size = img.size
            img.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)

            if fmt == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")

            out = io.BytesIO()
            save_kwargs = {"optimize": True}
            if fmt == "JPEG":
                save_kwargs["quality"] = quality
            img.save(out, format=fmt, **save_kwargs)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.warning("image_optimize_failed", error=str(exc), size=len(data))
        return None

    logger.info(
        "image_optimized",
        original_size=list(original_size),
        optimized_size=list(img.size),
        bytes_in=len(data),
        bytes_out=out.tell(),
    )
    return out.getvalue()

