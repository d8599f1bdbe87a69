import sys
import types

import pytest

from conftest import SVG_120x80, make_logo, png_bytes
from errors import RenderError
from imaging import to_data_url
from layout import svg_to_data_url
from storage import ArtifactSink, decode_artifact, rasterize_svg


class FakeS3:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail:
            raise RuntimeError("endpoint unreachable")
        self.objects[(Bucket, Key)] = (Body, ContentType)


def test_decode_artifact():
    assert decode_artifact(svg_to_data_url(SVG_120x80)) == SVG_120x80.encode("utf-8")
    with pytest.raises(ValueError):
        decode_artifact("https://example.com/logo.svg")


@pytest.mark.asyncio
async def test_vector_artifact_round_trip_is_byte_identical(sink):
    markup = SVG_120x80.replace("#0a0", "#0a0é")
    url = await sink.store(svg_to_data_url(markup), "checkout/7.svg")
    assert url.endswith("/static/checkout/7.svg")
    written = sink.local_path("checkout/7.svg").read_bytes()
    assert written == markup.encode("utf-8")


@pytest.mark.asyncio
async def test_raster_artifact_is_written_as_bytes(sink):
    raw = png_bytes(make_logo(20, 10))
    await sink.store(to_data_url(raw, "image/png"), "previews/1.png")
    assert sink.local_path("previews/1.png").read_bytes() == raw


@pytest.mark.asyncio
async def test_store_rejects_non_data_urls(sink):
    with pytest.raises(ValueError):
        await sink.store("not a data url", "checkout/1.svg")


def test_destination_cannot_escape_storage_dir(sink):
    with pytest.raises(ValueError):
        sink.local_path("../../etc/passwd")


@pytest.mark.asyncio
async def test_s3_upload(tmp_path):
    s3 = FakeS3()
    sink = ArtifactSink(mode="s3", storage_dir=tmp_path, bucket="outputs", s3_client=s3)
    url = await sink.store(svg_to_data_url(SVG_120x80), "/checkout/0.svg")
    assert url.endswith("/outputs/checkout/0.svg")
    body, content_type = s3.objects[("outputs", "checkout/0.svg")]
    assert body == SVG_120x80.encode("utf-8")
    assert content_type == "image/svg+xml"


@pytest.mark.asyncio
async def test_s3_failure_falls_back_to_local(tmp_path):
    sink = ArtifactSink(mode="s3", storage_dir=tmp_path, s3_client=FakeS3(fail=True))
    url = await sink.store(svg_to_data_url(SVG_120x80), "checkout/3.svg")
    assert "/static/checkout/3.svg" in url
    assert (tmp_path / "checkout" / "3.svg").read_text(encoding="utf-8") == SVG_120x80


def test_rasterize_uses_cairosvg(monkeypatch):
    seen = {}

    def svg2png(bytestring, output_width, output_height):
        seen.update(bytestring=bytestring, size=(output_width, output_height))
        return b"\x89PNG fake"

    monkeypatch.setitem(sys.modules, "cairosvg", types.SimpleNamespace(svg2png=svg2png))
    assert rasterize_svg(SVG_120x80, 1080, 566) == b"\x89PNG fake"
    assert seen["size"] == (1080, 566)
    assert seen["bytestring"] == SVG_120x80.encode("utf-8")


def test_rasterize_failure_is_a_render_error(monkeypatch):
    def svg2png(**kwargs):
        raise ValueError("bad svg")

    monkeypatch.setitem(sys.modules, "cairosvg", types.SimpleNamespace(svg2png=svg2png))
    with pytest.raises(RenderError):
        rasterize_svg("<svg", 10, 10)
