import io
import os
import tempfile

# settings are read at import time; keep test artifacts out of the service dir
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="checkout-storage-"))
os.environ.setdefault("STORAGE_MODE", "local")

import pytest
from PIL import Image, ImageDraw, ImageFont

from errors import FailureReason, FetchError
from models import FontResource
from storage import ArtifactSink


def png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def make_logo(width: int, height: int, mode: str = "RGB") -> Image.Image:
    """A flat two-color mark that compresses well."""
    alpha = (255,) if mode == "RGBA" else ()
    img = Image.new(mode, (width, height), (255, 255, 255) + alpha)
    draw = ImageDraw.Draw(img)
    draw.rectangle((width // 4, height // 4, 3 * width // 4, 3 * height // 4), fill=(20, 90, 200) + alpha)
    return img


def padded_logo(size: int = 100, box=(10, 20, 59, 79)) -> Image.Image:
    """Transparent canvas with one opaque rectangle (inclusive box)."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    ImageDraw.Draw(img).rectangle(box, fill=(200, 30, 30, 255))
    return img


SVG_120x80 = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="120" height="80" viewBox="0 0 300 150">'
    '<rect width="120" height="80" fill="#0a0"/></svg>'
)


class StaticFontResolver:
    def __init__(self, font: FontResource):
        self.font = font
        self.calls = 0

    async def get(self, family: str = "Poppins", weight: int = 500) -> FontResource:
        self.calls += 1
        return self.font


class MissingFontResolver:
    async def get(self, family: str = "Poppins", weight: int = 500) -> FontResource:
        raise FetchError("Font Poppins (500) unavailable: HTTP 503", FailureReason.FONT_UNAVAILABLE)


@pytest.fixture(scope="session")
def font() -> FontResource:
    try:
        face = ImageFont.load_default(size=20)
    except (TypeError, ImportError, OSError):
        pytest.skip("Pillow without FreeType support")
    data = getattr(face, "font_bytes", None)
    if not data:
        pytest.skip("Pillow without a bundled TrueType font")
    return FontResource(family="Aileron", weight=400, data=data)


@pytest.fixture
def font_resolver(font) -> StaticFontResolver:
    return StaticFontResolver(font)


@pytest.fixture
def sink(tmp_path) -> ArtifactSink:
    return ArtifactSink(mode="local", storage_dir=tmp_path / "storage")


@pytest.fixture
def logo_file(tmp_path):
    def _write(name: str, image: Image.Image = None, data: bytes = None) -> str:
        path = tmp_path / name
        path.write_bytes(data if data is not None else png_bytes(image))
        return str(path)
    return _write
