"""Best-effort SVG size detection.

This is a regex heuristic over markup text, not an SVG parser. Each tier can
only fall through to the next one; nothing here raises on bad input.
"""
import re
from typing import Optional, Union

from models import ImageSize

_NUM = r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?"
_UNIT = r"(?:px|pt|pc|mm|cm|in|em|ex)?"

_ROOT_TAG_RE = re.compile(r"<svg\b[^>]*>", re.IGNORECASE | re.DOTALL)
_WIDTH_RE = re.compile(r"(?<![\w:-])width\s*=\s*[\"']\s*(" + _NUM + r")\s*" + _UNIT + r"\s*[\"']", re.IGNORECASE)
_HEIGHT_RE = re.compile(r"(?<![\w:-])height\s*=\s*[\"']\s*(" + _NUM + r")\s*" + _UNIT + r"\s*[\"']", re.IGNORECASE)
_VIEWBOX_RE = re.compile(
    r"(?<![\w:-])viewBox\s*=\s*[\"']\s*(" + _NUM + r")[\s,]+(" + _NUM + r")[\s,]+(" + _NUM + r")[\s,]+(" + _NUM + r")\s*[\"']",
    re.IGNORECASE,
)


def _as_text(markup: Union[str, bytes, None]) -> str:
    if markup is None:
        return ""
    if isinstance(markup, bytes):
        return markup.decode("utf-8", errors="replace")
    return markup


def _root_tag(markup: str) -> Optional[str]:
    m = _ROOT_TAG_RE.search(markup)
    return m.group(0) if m else None


def size_from_attributes(markup: Union[str, bytes, None]) -> Optional[ImageSize]:
    """Tier 1: explicit width/height attributes on the root <svg>."""
    tag = _root_tag(_as_text(markup))
    if not tag:
        return None
    w = _WIDTH_RE.search(tag)
    h = _HEIGHT_RE.search(tag)
    if not (w and h):
        return None
    try:
        width, height = float(w.group(1)), float(h.group(1))
    except ValueError:
        return None
    if width < 0 or height < 0:
        return None
    return ImageSize(width=width, height=height)


def size_from_viewbox(markup: Union[str, bytes, None]) -> Optional[ImageSize]:
    """Tier 2: width/height components of viewBox="minX minY width height"."""
    tag = _root_tag(_as_text(markup))
    if not tag:
        return None
    m = _VIEWBOX_RE.search(tag)
    if not m:
        return None
    try:
        width, height = float(m.group(3)), float(m.group(4))
    except ValueError:
        return None
    if width < 0 or height < 0:
        return None
    return ImageSize(width=width, height=height)


def svg_dimensions(markup: Union[str, bytes, None]) -> ImageSize:
    """Resolve SVG dimensions: attributes, then viewBox, then (0, 0)."""
    for tier in (size_from_attributes, size_from_viewbox):
        size = tier(markup)
        if size is not None:
            return size
    return ImageSize(width=0, height=0)


def is_svg_reference(reference: str) -> bool:
    """True for references ending in .svg (query strings ignored) or inline SVG markup."""
    ref = (reference or "").strip()
    lowered = ref.lower()
    if lowered.startswith("<"):
        return is_svg_markup(ref)
    path = lowered.split("?", 1)[0].split("#", 1)[0]
    return path.endswith(".svg")


def is_svg_markup(data: Union[str, bytes, None]) -> bool:
    """Sniff fetched content for an SVG document prefix."""
    text = _as_text(data[:2048] if data else data).lstrip("\ufeff \t\r\n").lower()
    if text.startswith("<svg"):
        return True
    if text.startswith("<?xml") or text.startswith("<!doctype svg") or text.startswith("<!--"):
        return "<svg" in text
    return False
