"""In-process raster re-encode (png, jpeg, webp) with Pillow."""
import io
import logging
from typing import Optional

from PIL import Image

from converter.config import MIN_QUALITY

logger = logging.getLogger("converter.raster")

# format code -> (Pillow format, media type)
_ENCODERS = {
    "png": ("PNG", "image/png"),
    "jpg": ("JPEG", "image/jpeg"),
    "jpeg": ("JPEG", "image/jpeg"),
    "webp": ("WEBP", "image/webp"),
}


def clamp_quality(quality: Optional[float]) -> Optional[float]:
    """Map a 0-100 slider value to the [0.5, 1.0] encoder range."""
    if quality is None:
        return None
    return max(MIN_QUALITY, min(1.0, float(quality) / 100.0))


def reencode(data: bytes, format_code: str, quality: Optional[float] = None) -> tuple[bytes, str]:
    """Decode raster bytes and encode them as format_code. Returns (bytes, media type).

    quality is in [0, 1] and only applies to jpeg and webp.
    """
    fmt = format_code.lower()
    if fmt not in _ENCODERS:
        raise ValueError(f"Raster encoder does not support {format_code!r}")
    pil_format, media_type = _ENCODERS[fmt]

    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
            work = img.convert("RGB")
        elif img.mode not in ("RGB", "RGBA", "L", "LA"):
            work = img.convert("RGBA")
        else:
            work = img
        save_kw: dict = {"format": pil_format}
        if pil_format in ("JPEG", "WEBP") and quality is not None:
            save_kw["quality"] = int(round(max(0.0, min(1.0, quality)) * 100))
        if pil_format in ("PNG", "JPEG"):
            save_kw["optimize"] = True
        buf = io.BytesIO()
        work.save(buf, **save_kw)

    out = buf.getvalue()
    if not out:
        raise ValueError("Raster encoder produced no data")
    logger.debug("Re-encoded %d bytes to %s (%d bytes)", len(data), fmt, len(out))
    return out, media_type
