import io
import re
import base64
import logging
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from errors import DecodeError
from models import ImageSize

logger = logging.getLogger(__name__)

# Downstream consumers strip the prefix with this exact pattern
DATA_URL_PREFIX_RE = re.compile(r"^data:image/[^;]+;base64,")

_ALPHA_MODES = ("RGBA", "LA", "PA", "RGBa", "La")


class SizeUnit(str, Enum):
    B = "B"
    kB = "kB"


def size_of(encoded: str, unit: SizeUnit = SizeUnit.kB) -> float:
    """Size of an encoded string counted as 2 bytes per character.

    All budgets and oversize thresholds are expressed in this unit.
    """
    b = len(encoded) * 2
    if unit == SizeUnit.B:
        return float(b)
    return b / 1024


def format_data_url(payload_b64: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{payload_b64}"


def to_data_url(data: bytes, mime_type: str) -> str:
    return format_data_url(base64.b64encode(data).decode("ascii"), mime_type)


def split_data_url(data_url: str) -> Tuple[str, bytes]:
    """Return (mime_type, decoded bytes) for a data:image/...;base64, URL."""
    m = DATA_URL_PREFIX_RE.match(data_url or "")
    if not m:
        raise ValueError("Not a base64 image data URL")
    mime = data_url[len("data:"):m.end() - len(";base64,")]
    return mime, base64.b64decode(data_url[m.end():])


def decode_image(data: bytes) -> Image.Image:
    """Decode raster bytes with Pillow. Malformed input raises DecodeError."""
    if not data:
        raise DecodeError("Error processing image: empty image data")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Error processing image: {e}") from e
    return image


def has_alpha(image: Image.Image) -> bool:
    if image.mode in _ALPHA_MODES:
        return True
    return "transparency" in image.info


def _alpha_bbox(rgba: Image.Image) -> Optional[Tuple[int, int, int, int]]:
    """Inclusive (min_x, min_y, max_x, max_y) of pixels with alpha > 0, or None."""
    alpha = np.asarray(rgba.getchannel("A"))
    opaque = alpha > 0
    rows = np.any(opaque, axis=1)
    cols = np.any(opaque, axis=0)
    if not rows.any():
        return None
    min_y, max_y = np.where(rows)[0][[0, -1]]
    min_x, max_x = np.where(cols)[0][[0, -1]]
    return int(min_x), int(min_y), int(max_x), int(max_y)


def trim_transparent(image: Image.Image) -> Image.Image:
    """Crop fully transparent rows/columns from all four edges.

    Images without alpha, fully transparent images and degenerate boxes
    (a single row or column of content) come back unmodified.
    """
    if not has_alpha(image):
        return image
    rgba = image if image.mode == "RGBA" else image.convert("RGBA")
    bbox = _alpha_bbox(rgba)
    if bbox is None:
        return image
    min_x, min_y, max_x, max_y = bbox
    if min_x >= max_x or min_y >= max_y:
        return image
    if (min_x, min_y, max_x + 1, max_y + 1) == (0, 0, rgba.width, rgba.height):
        return rgba
    return rgba.crop((min_x, min_y, max_x + 1, max_y + 1))


def fit_within(image: Image.Image, max_width: Optional[int] = None, max_height: Optional[int] = None) -> Image.Image:
    """Downscale preserving aspect ratio so no bounded axis exceeds its max. None = unbounded."""
    w, h = image.size
    scale = 1.0
    if max_width is not None and w > max_width:
        scale = min(scale, max_width / w)
    if max_height is not None and h > max_height:
        scale = min(scale, max_height / h)
    if scale >= 1.0:
        return image
    new_size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    if image.mode not in ("RGB", "RGBA", "L", "LA"):
        image = image.convert("RGBA" if has_alpha(image) else "RGB")
    return image.resize(new_size, Image.LANCZOS)


def normalize(data: bytes, max_width: Optional[int] = None, max_height: Optional[int] = None) -> Tuple[Image.Image, ImageSize, str]:
    """Decode, trim transparent border and bound the logo.

    Returns (image, content size, source format name such as 'PNG' or 'JPEG').
    """
    image = decode_image(data)
    source_format = (image.format or "").upper()
    trimmed = trim_transparent(image)
    if trimmed.size != image.size:
        logger.debug(f"Trimmed transparent border {image.size} -> {trimmed.size}")
    bounded = fit_within(trimmed, max_width=max_width, max_height=max_height)
    return bounded, ImageSize(width=bounded.width, height=bounded.height), source_format


def _gif_bytes(image: Image.Image, quality: int) -> bytes:
    # Quality maps onto palette size: 100 -> 256 colors, 40 -> 102 colors
    colors = max(2, min(256, int(round(256 * quality / 100))))
    buf = io.BytesIO()
    if has_alpha(image):
        rgba = image.convert("RGBA")
        paletted = rgba.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
        transparency = None
        palette = paletted.getpalette("RGBA") or []
        for idx in range(len(palette) // 4):
            if palette[idx * 4 + 3] == 0:
                transparency = idx
                break
        if transparency is not None:
            paletted.save(buf, format="GIF", optimize=True, transparency=transparency)
        else:
            paletted.save(buf, format="GIF", optimize=True)
    else:
        paletted = image.convert("RGB").quantize(colors=colors)
        paletted.save(buf, format="GIF", optimize=True)
    return buf.getvalue()


def encode_raster(image: Image.Image, quality: int, *, first_attempt: bool, source_format: str = "") -> Tuple[bytes, str]:
    """Encode a normalized logo at a ladder quality level.

    JPEG sources stay JPEG. Everything else is tried as lossless PNG on the
    first attempt and as a reduced-palette GIF afterwards.
    """
    if source_format.upper() in ("JPEG", "JPG", "MPO"):
        buf = io.BytesIO()
        image.convert("RGB").save(buf, format="JPEG", quality=int(quality), optimize=True)
        return buf.getvalue(), "image/jpeg"
    if first_attempt:
        buf = io.BytesIO()
        im = image
        if im.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"):
            im = im.convert("RGBA" if has_alpha(im) else "RGB")
        im.save(buf, format="PNG", optimize=True)
        return buf.getvalue(), "image/png"
    return _gif_bytes(image, quality), "image/gif"
