"""Adaptive encoder: turns a logo reference into a checkout artifact under a size budget.

Raster logos walk the quality ladder until the composed artifact fits the
budget. The ladder is the only retry in the pipeline and it only reacts to
the budget; decode, fetch and render errors propagate on the first attempt.
"""
import base64
import asyncio
import logging
from typing import Optional, Sequence, Union

import httpx

import settings
from errors import BudgetExceededError
from imaging import encode_raster, normalize, size_of
from layout import compose_data_url
from models import DEFAULT_TEMPLATE, EncodedImage, FontResource, ImageSize, LayoutTemplate
from sources import fetch_bytes
from svg_size import is_svg_markup, is_svg_reference, svg_dimensions

logger = logging.getLogger(__name__)


def encode_vector(markup: Union[str, bytes]) -> EncodedImage:
    """Embed SVG markup verbatim as base64; size comes from the markup itself."""
    raw = markup.encode("utf-8") if isinstance(markup, str) else markup
    return EncodedImage(
        payload=base64.b64encode(raw).decode("ascii"),
        mime_type="image/svg+xml",
        metadata=svg_dimensions(raw),
    )


def _artifact(data_url: str, template: LayoutTemplate, logo: ImageSize, quality: Optional[int], attempts: Sequence[int]) -> EncodedImage:
    prefix = "data:image/svg+xml;base64,"
    return EncodedImage(
        payload=data_url[len(prefix):],
        mime_type="image/svg+xml",
        metadata=ImageSize(width=template.width, height=template.height),
        quality=quality,
        attempts=list(attempts),
        logo=logo,
    )


def _label(source: str) -> str:
    s = (source or "").strip()
    if s.startswith("<"):
        return "<inline svg>"
    return s if len(s) <= 80 else s[:77] + "..."


async def encode(
    source: str,
    *,
    font: FontResource,
    budget_kb: float = settings.MAX_ARTIFACT_KB,
    qualities: Sequence[int] = settings.DEFAULT_QUALITIES,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
    template: LayoutTemplate = DEFAULT_TEMPLATE,
    client: Optional[httpx.AsyncClient] = None,
) -> EncodedImage:
    """Build the checkout artifact for `source` (URL, local path or inline SVG markup).

    Raises FetchError, DecodeError, RenderError, or BudgetExceededError once the
    ladder is exhausted.
    """
    qualities = tuple(int(q) for q in qualities)
    if not qualities:
        raise ValueError("Quality ladder must contain at least one level")
    if max_height is None:
        max_height = template.logo_max_height
    label = _label(source)

    inline = (source or "").lstrip()
    if inline.startswith("<") and is_svg_markup(inline):
        data: Union[str, bytes] = inline
    else:
        data = await fetch_bytes(source, client)

    if isinstance(data, str) or is_svg_reference(source) or is_svg_markup(data):
        logo = encode_vector(data)
        result = await asyncio.to_thread(compose_data_url, logo.data_url, logo.metadata, font=font, template=template)
        size = size_of(result)
        logger.info(f"{label}: svg logo {logo.metadata.width:g}x{logo.metadata.height:g} -> {size:.2f}kB (budget {budget_kb:g}kB)")
        if size > budget_kb:
            # Markup is embedded verbatim; every ladder level would give the same size
            raise BudgetExceededError(budget_kb, qualities, size)
        return _artifact(result, template, logo.metadata, None, [])

    image, logo_size, source_format = await asyncio.to_thread(normalize, data, max_width, max_height)
    attempts = []
    size = None
    for i, quality in enumerate(qualities):
        attempts.append(quality)
        raw, mime = await asyncio.to_thread(
            encode_raster, image, quality, first_attempt=(i == 0), source_format=source_format
        )
        logo = EncodedImage(payload=base64.b64encode(raw).decode("ascii"), mime_type=mime, metadata=logo_size)
        result = await asyncio.to_thread(compose_data_url, logo.data_url, logo_size, font=font, template=template)
        size = size_of(result)
        logger.info(f"{label}: quality={quality} {mime} {logo_size.width:g}x{logo_size.height:g} -> {size:.2f}kB (budget {budget_kb:g}kB)")
        if size <= budget_kb:
            return _artifact(result, template, logo_size, quality, attempts)

    raise BudgetExceededError(budget_kb, qualities, size)
