import json

import httpx
import pytest

from errors import FailureReason, FetchError
from sources import (
    FontResolver,
    Replacement,
    ReplacementTable,
    fetch_bytes,
    source_size_bytes,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
@pytest.mark.parametrize("ref,reason", [
    ("", FailureReason.EMPTY_SOURCE),
    ("   ", FailureReason.EMPTY_SOURCE),
    ("-", FailureReason.PLACEHOLDER_SOURCE),
])
async def test_empty_and_placeholder_references_are_benign(ref, reason):
    with pytest.raises(FetchError) as exc:
        await fetch_bytes(ref)
    assert exc.value.reason == reason
    assert exc.value.benign


@pytest.mark.asyncio
async def test_missing_local_file(tmp_path):
    with pytest.raises(FetchError) as exc:
        await fetch_bytes(str(tmp_path / "nope.png"))
    assert exc.value.reason == FailureReason.FETCH_FAILED
    assert not exc.value.benign


@pytest.mark.asyncio
async def test_local_file_bytes(tmp_path):
    path = tmp_path / "logo.bin"
    path.write_bytes(b"\x01\x02\x03")
    assert await fetch_bytes(str(path)) == b"\x01\x02\x03"
    assert await source_size_bytes(str(path)) == 3


@pytest.mark.asyncio
async def test_invalid_local_path_is_a_fetch_error(tmp_path):
    ref = str(tmp_path / "a\x00.png")
    with pytest.raises(FetchError) as exc:
        await fetch_bytes(ref)
    assert exc.value.reason == FailureReason.FETCH_FAILED
    assert await source_size_bytes(ref) == -1


@pytest.mark.asyncio
async def test_remote_fetch():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/logo.png":
            return httpx.Response(200, content=b"PNGDATA")
        return httpx.Response(404)

    async with _client(handler) as client:
        assert await fetch_bytes("https://cdn.example.com/logo.png", client) == b"PNGDATA"
        with pytest.raises(FetchError) as exc:
            await fetch_bytes("https://cdn.example.com/missing.png", client)
    assert "404" in str(exc.value)
    assert exc.value.reason == FailureReason.FETCH_FAILED


@pytest.mark.asyncio
async def test_remote_transport_error_is_a_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(FetchError):
            await fetch_bytes("https://down.example.com/logo.png", client)


@pytest.mark.asyncio
async def test_source_size_from_head():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "HEAD"
        if request.url.path == "/sized.png":
            return httpx.Response(200, headers={"content-length": "2048"})
        return httpx.Response(200)

    async with _client(handler) as client:
        assert await source_size_bytes("https://cdn.example.com/sized.png", client) == 2048
        assert await source_size_bytes("https://cdn.example.com/unsized.png", client) == -1
    assert await source_size_bytes("-") == -1
    assert await source_size_bytes("/does/not/exist.png") == -1


@pytest.mark.asyncio
async def test_font_resolver_fetches_once():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request.url)
        return httpx.Response(200, content=b"FONTBYTES")

    async with _client(handler) as client:
        resolver = FontResolver({("Poppins", 500): "https://fonts.example.com/Poppins-Medium.ttf"}, client=client)
        first = await resolver.get("Poppins", 500)
        second = await resolver.get("Poppins", 500)
    assert first is second
    assert first.data == b"FONTBYTES"
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_font_resolver_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with _client(handler) as client:
        resolver = FontResolver({("Poppins", 500): "https://fonts.example.com/Poppins-Medium.ttf"}, client=client)
        with pytest.raises(FetchError) as exc:
            await resolver.get("Poppins", 500)
        assert exc.value.reason == FailureReason.FONT_UNAVAILABLE
        with pytest.raises(FetchError) as exc:
            await resolver.get("Inter", 400)
        assert exc.value.reason == FailureReason.FONT_UNAVAILABLE


def test_default_replacement_is_case_insensitive():
    table = ReplacementTable()
    out = table.apply("https://PARAGRAPH.XYZ/static/logo.svg")
    assert out == "https://loop-entity-logos.s3.us-east-2.amazonaws.com/paragraph.png"


def test_unmatched_reference_is_unchanged():
    assert ReplacementTable().apply("https://acme.example.com/logo.png") == "https://acme.example.com/logo.png"
    assert ReplacementTable().apply("") == ""


def test_first_matching_replacement_wins():
    table = ReplacementTable([
        Replacement(replace="acme", with_="first.png"),
        Replacement(replace="acme.com", with_="second.png"),
    ])
    assert table.apply("https://acme.com/logo.png") == "first.png"


def test_replacements_from_json_file(tmp_path):
    path = tmp_path / "replacements.json"
    path.write_text(json.dumps([{"replace": "broken.example", "with": "https://cdn.example.com/fixed.png"}]))
    table = ReplacementTable.from_file(str(path))
    assert table.apply("http://broken.example/a.png") == "https://cdn.example.com/fixed.png"
    assert table.apply("https://paragraph.xyz/logo.png") == "https://paragraph.xyz/logo.png"
