"""Checkout frame compositor.

Produces a self-contained SVG document: the logo and all text are embedded as
data URLs, so the artifact renders the same anywhere without fonts or network.
Text is rasterized through Pillow with the supplied font resource.
"""
import io
import base64
import threading
import logging
from functools import lru_cache
from typing import Optional, Tuple

from jinja2 import Template
from PIL import Image, ImageColor, ImageDraw, ImageFont

from errors import RenderError
from imaging import to_data_url
from models import DEFAULT_TEMPLATE, FontResource, ImageSize, LayoutTemplate

logger = logging.getLogger(__name__)

# FreeType faces are shared between worker threads
_text_lock = threading.Lock()

FOOTER_TEXT = "Checkout powered by"
WORDMARK_VIEWBOX = "0 0 75 14"
WORDMARK_PATH = "M34.65 10.26c-2.12 0-3.82-1.5-3.82-3.75s1.65-3.76 3.76-3.76c1.75 0 3.2 1.06 3.5 2.52l-1.36.4c-.12-1.03-1-1.8-2.14-1.8-1.37 0-2.42 1.09-2.42 2.64 0 1.54 1.05 2.6 2.42 2.6 1.18 0 2.11-.74 2.2-1.89l1.43.4c-.28 1.55-1.77 2.64-3.57 2.64Zm5.11-7.34h1.05l.16 1.2a2.19 2.19 0 0 1 2.89-1.2l-.06 1.35a2.03 2.03 0 0 0-.93-.23c-1.1 0-1.87.8-1.87 1.92v4.13h-1.24V2.92Zm6.7 0 2.27 5.5 2.11-5.5h1.43l-3.42 8.2c-.48 1.15-1.33 1.9-2.39 2l-.34-1.2c.69-.06 1.21-.37 1.5-1.03l.43-1.03L45 2.92h1.46Zm8.2 5.96v4.07h-1.24V2.93h1.05l.16 1.2a3.22 3.22 0 0 1 2.76-1.37c2.08 0 3.7 1.55 3.7 3.73s-1.7 3.78-3.7 3.78a3.25 3.25 0 0 1-2.73-1.38Zm2.54.23a2.5 2.5 0 0 0 2.58-2.6c0-1.52-1.09-2.64-2.58-2.64s-2.57 1.1-2.57 2.64 1.08 2.6 2.57 2.6Zm4.63-6.19h.5c.48 0 .84-.37.84-.88v-.95h1.18v1.83h1.7v1.12h-1.7V8.2c0 .53.42.89 1.05.89.22 0 .47-.03.65-.1l.04 1.16a3.33 3.33 0 0 1-.87.1c-1.26 0-2.11-.72-2.11-1.82V4.04h-1.28V2.92Zm5.37 3.59c0-2.18 1.63-3.76 3.88-3.76s3.88 1.58 3.88 3.76-1.63 3.75-3.88 3.75-3.88-1.58-3.88-3.75Zm3.88 2.6a2.5 2.5 0 0 0 2.58-2.6 2.53 2.53 0 0 0-2.58-2.64c-1.49 0-2.57 1.1-2.57 2.64s1.08 2.6 2.57 2.6ZM2.9.36v9.74H.72V.35H2.9ZM4.07 6.5c0-2.18 1.66-3.76 3.95-3.76s3.94 1.58 3.94 3.76-1.66 3.75-3.94 3.75c-2.28 0-3.95-1.58-3.95-3.75Zm3.95 1.83c.99 0 1.7-.77 1.7-1.85 0-1.07-.71-1.85-1.7-1.85-1 0-1.71.78-1.71 1.85 0 1.08.71 1.85 1.7 1.85Zm4.84-1.83c0-2.18 1.66-3.76 3.94-3.76 2.28 0 3.94 1.58 3.94 3.76s-1.66 3.75-3.94 3.75c-2.28 0-3.94-1.58-3.94-3.75Zm3.94 1.83c1 0 1.7-.77 1.7-1.85 0-1.07-.7-1.85-1.7-1.85s-1.7.78-1.7 1.85c0 1.08.7 1.85 1.7 1.85Zm7.23.82v3.8h-2.17V2.91h1.68l.37.92a2.96 2.96 0 0 1 2.36-1.09c1.96 0 3.39 1.57 3.39 3.7 0 2.14-1.39 3.81-3.26 3.81-.95 0-1.77-.41-2.36-1.1Zm1.71-.85c1 0 1.71-.76 1.71-1.82s-.71-1.82-1.7-1.82c-1 0-1.72.76-1.72 1.82s.72 1.82 1.71 1.82Z"

CHECKOUT_SVG_TEMPLATE = """<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" width="{{ width }}" height="{{ height }}" viewBox="0 0 {{ width }} {{ height }}">
<rect width="{{ width }}" height="{{ height }}" fill="{{ background }}"/>
{% if logo_href %}<image x="{{ logo_x }}" y="{{ logo_y }}" width="{{ logo_w }}" height="{{ logo_h }}" preserveAspectRatio="xMidYMid meet" xlink:href="{{ logo_href | e }}"/>
{% endif %}<image x="{{ label_x }}" y="{{ label_y }}" width="{{ label_w }}" height="{{ label_h }}" xlink:href="{{ label_href }}"/>
<svg x="{{ wordmark_x }}" y="{{ wordmark_y }}" width="{{ wordmark_w }}" height="{{ wordmark_h }}" viewBox="{{ wordmark_viewbox }}" preserveAspectRatio="xMidYMid meet" fill="none"><path fill="{{ wordmark_color }}" d="{{ wordmark_path }}"/></svg>
</svg>"""

TEXT_LABEL_SVG_TEMPLATE = """<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" width="{{ width }}" height="{{ height }}" viewBox="0 0 {{ width }} {{ height }}">
<image x="{{ x }}" y="{{ y }}" width="{{ w }}" height="{{ h }}" xlink:href="{{ href }}"/>
</svg>"""

_checkout_template = Template(CHECKOUT_SVG_TEMPLATE)
_label_template = Template(TEXT_LABEL_SVG_TEMPLATE)


def _fmt(x: float) -> str:
    return f"{float(x):.2f}".rstrip("0").rstrip(".")


@lru_cache(maxsize=32)
def load_font(font: FontResource, size: int) -> ImageFont.FreeTypeFont:
    if not font.data:
        raise RenderError(f"Font {font.family} ({font.weight}) has no data")
    try:
        return ImageFont.truetype(io.BytesIO(font.data), size)
    except (OSError, ValueError) as e:
        raise RenderError(f"Failed to load font {font.family} ({font.weight}): {e}") from e


def render_text_png(
    text: str,
    font: FontResource,
    size: int,
    color: str = "#333",
    *,
    letter_spacing_em: float = 0.0,
    scale: int = 1,
) -> Tuple[bytes, float, float]:
    """Rasterize a single line of text onto a transparent PNG.

    Returns (png bytes, display width, display height); the bitmap itself is
    `scale` times larger for crisper downsampling.
    """
    spacing = letter_spacing_em * size * scale
    try:
        with _text_lock:
            face = load_font(font, max(1, int(round(size * scale))))
            ascent, descent = face.getmetrics()
            advances = [face.getlength(ch) for ch in text]
            total = sum(advances) + spacing * max(0, len(text) - 1)
            img_w = max(1, int(round(total)))
            img_h = max(1, ascent + descent)
            canvas = Image.new("RGBA", (img_w, img_h), (0, 0, 0, 0))
            draw = ImageDraw.Draw(canvas)
            fill = ImageColor.getrgb(color)
            x = 0.0
            for ch, adv in zip(text, advances):
                draw.text((x, 0), ch, font=face, fill=fill)
                x += adv + spacing
        buf = io.BytesIO()
        canvas.save(buf, format="PNG", optimize=True)
    except (OSError, ValueError) as e:
        raise RenderError(f"Failed to render text {text!r}: {e}") from e
    return buf.getvalue(), img_w / scale, img_h / scale


@lru_cache(maxsize=8)
def _footer_label(font: FontResource, template: LayoutTemplate) -> Tuple[str, float, float]:
    png, w, h = render_text_png(
        FOOTER_TEXT.upper(),
        font,
        template.footer_font_size,
        template.text_color,
        letter_spacing_em=template.footer_letter_spacing,
        scale=2,
    )
    return to_data_url(png, "image/png"), w, h


def logo_box(logo_size: ImageSize, template: LayoutTemplate = DEFAULT_TEMPLATE) -> Tuple[float, float, float, float]:
    """(x, y, width, height) the logo is contained in, after orientation padding.

    Wide logos get heavier top padding so non-square marks sit visually centered.
    """
    pad_top, pad_x, pad_bottom = template.wide_padding if logo_size.wide else template.tall_padding
    x = template.padding_x + pad_x
    y = template.padding_top + pad_top
    w = max(0, template.content_width - 2 * pad_x)
    h = max(0, template.logo_max_height - pad_top - pad_bottom)
    return x, y, w, h


def compose(
    logo_href: str,
    logo_size: ImageSize,
    *,
    font: FontResource,
    template: LayoutTemplate = DEFAULT_TEMPLATE,
) -> str:
    """Lay out the logo, footer label and wordmark into the checkout frame SVG."""
    logo_x, logo_y, logo_w, logo_h = logo_box(logo_size, template)
    label_href, label_w, label_h = _footer_label(font, template)

    footer_bottom = template.footer_y + template.footer_height
    wordmark_x = template.width - template.padding_x - template.wordmark_width
    label_x = max(template.padding_x, wordmark_x - template.footer_gap - label_w)
    label_y = footer_bottom - template.footer_text_padding_bottom - label_h

    return _checkout_template.render(
        width=template.width,
        height=template.height,
        background=template.background,
        logo_href=logo_href,
        logo_x=_fmt(logo_x),
        logo_y=_fmt(logo_y),
        logo_w=_fmt(logo_w),
        logo_h=_fmt(logo_h),
        label_href=label_href,
        label_x=_fmt(label_x),
        label_y=_fmt(label_y),
        label_w=_fmt(label_w),
        label_h=_fmt(label_h),
        wordmark_x=_fmt(wordmark_x),
        wordmark_y=_fmt(template.footer_y),
        wordmark_w=_fmt(template.wordmark_width),
        wordmark_h=_fmt(template.footer_height),
        wordmark_viewbox=WORDMARK_VIEWBOX,
        wordmark_color=template.wordmark_color,
        wordmark_path=WORDMARK_PATH,
    )


def svg_to_data_url(svg_text: str) -> str:
    return "data:image/svg+xml;base64," + base64.b64encode(svg_text.encode("utf-8")).decode("ascii")


def compose_data_url(
    logo_href: str,
    logo_size: ImageSize,
    *,
    font: FontResource,
    template: LayoutTemplate = DEFAULT_TEMPLATE,
) -> str:
    return svg_to_data_url(compose(logo_href, logo_size, font=font, template=template))


def label_font_size(text: str) -> int:
    """Longer names get smaller type so they fit on one line."""
    n = len(text)
    if n > 16:
        return 64
    if n > 14:
        return 80
    if n > 12:
        return 96
    if n > 10:
        return 112
    if n > 8:
        return 128
    return 144


def render_text_label(
    text: str,
    *,
    font: FontResource,
    width: Optional[int] = None,
    color: str = "#333",
) -> str:
    """Render a company name as an SVG "logo" for when the real one is unusable."""
    width = int(width or DEFAULT_TEMPLATE.label_width)
    size = label_font_size(text)
    png, w, h = render_text_png(text.upper(), font, size, color, letter_spacing_em=-0.08)
    if w > width:
        h = h * width / w
        w = width
    height = size
    return _label_template.render(
        width=width,
        height=height,
        x=_fmt((width - w) / 2),
        y=_fmt((height - h) / 2),
        w=_fmt(w),
        h=_fmt(h),
        href=to_data_url(png, "image/png"),
    )
