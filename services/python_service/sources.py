import json
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os
import httpx
from pydantic import BaseModel, Field

import settings
from errors import FailureReason, FetchError
from models import FontResource

logger = logging.getLogger(__name__)

PLACEHOLDER_REFERENCE = "-"


def is_remote(reference: str) -> bool:
    ref = (reference or "").strip().lower()
    return ref.startswith("http://") or ref.startswith("https://")


def _check_reference(reference: str) -> str:
    ref = (reference or "").strip()
    if not ref:
        raise FetchError("No source reference given", FailureReason.EMPTY_SOURCE)
    if ref == PLACEHOLDER_REFERENCE:
        raise FetchError(f"Placeholder source reference {ref!r}", FailureReason.PLACEHOLDER_SOURCE)
    return ref


async def fetch_bytes(reference: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """Read source bytes from an http(s) URL or a local path."""
    ref = _check_reference(reference)
    if is_remote(ref):
        try:
            if client is not None:
                resp = await client.get(ref, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=settings.FETCH_TIMEOUT_S) as h:
                    resp = await h.get(ref, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(f"Failed to fetch {ref}: {e}") from e
        if not resp.is_success:
            raise FetchError(f"Failed to fetch {ref}: HTTP {resp.status_code}")
        return resp.content
    try:
        async with aiofiles.open(ref, "rb") as f:
            return await f.read()
    except (OSError, ValueError) as e:
        raise FetchError(f"Failed to read {ref}: {e}") from e


async def source_size_bytes(reference: str, client: Optional[httpx.AsyncClient] = None) -> int:
    """Best-effort size of the source in bytes; -1 when it cannot be determined."""
    ref = (reference or "").strip()
    if not ref or ref == PLACEHOLDER_REFERENCE:
        return -1
    if not is_remote(ref):
        try:
            return (await aiofiles.os.stat(ref)).st_size
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to get file size for {ref}: {e}")
            return -1
    try:
        if client is not None:
            resp = await client.head(ref, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=settings.FETCH_TIMEOUT_S) as h:
                resp = await h.head(ref, follow_redirects=True)
        length = resp.headers.get("content-length")
        return int(length) if resp.is_success and length else -1
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        logger.debug(f"HEAD failed for {ref}: {e}")
        return -1


class FontResolver:
    """Fetches font files once per run and hands out the cached bytes.

    `sources` maps (family, weight) to a URL or local path.
    """

    def __init__(self, sources: Dict[Tuple[str, int], str], client: Optional[httpx.AsyncClient] = None):
        self.sources = dict(sources)
        self.client = client
        self._cache: Dict[Tuple[str, int], FontResource] = {}
        self._locks: Dict[Tuple[str, int], asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, client: Optional[httpx.AsyncClient] = None) -> "FontResolver":
        return cls({(settings.FONT_FAMILY, settings.FONT_WEIGHT): settings.FONT_URL}, client=client)

    async def get(self, family: str = settings.FONT_FAMILY, weight: int = settings.FONT_WEIGHT) -> FontResource:
        key = (family, weight)
        if key in self._cache:
            return self._cache[key]
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._cache:
                return self._cache[key]
            location = self.sources.get(key)
            if not location:
                raise FetchError(f"No font configured for {family} ({weight})", FailureReason.FONT_UNAVAILABLE)
            try:
                data = await fetch_bytes(location, self.client)
            except FetchError as e:
                raise FetchError(f"Font {family} ({weight}) unavailable: {e}", FailureReason.FONT_UNAVAILABLE) from e
            logger.info(f"Loaded font {family} ({weight}) from {location} ({len(data)/1024:.1f}kB)")
            font = FontResource(family=family, weight=weight, data=data)
            self._cache[key] = font
            return font


class Replacement(BaseModel):
    model_config = {"populate_by_name": True}

    replace: str
    with_: str = Field(alias="with")


DEFAULT_REPLACEMENTS: List[Replacement] = [
    Replacement(replace="paragraph.xyz", with_="https://loop-entity-logos.s3.us-east-2.amazonaws.com/paragraph.png"),
]


class ReplacementTable:
    """Substitutes known-bad source references. First case-insensitive substring match wins."""

    def __init__(self, replacements: Optional[List[Replacement]] = None):
        self.replacements = list(DEFAULT_REPLACEMENTS if replacements is None else replacements)

    @classmethod
    def from_file(cls, path: str) -> "ReplacementTable":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls([Replacement(**entry) for entry in raw])

    @classmethod
    def from_settings(cls) -> "ReplacementTable":
        if settings.REPLACEMENTS_FILE:
            try:
                return cls.from_file(settings.REPLACEMENTS_FILE)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load replacements from {settings.REPLACEMENTS_FILE}: {e}")
                raise
        return cls()

    def apply(self, reference: str) -> str:
        lowered = (reference or "").lower()
        for r in self.replacements:
            if r.replace and r.replace.lower() in lowered:
                return r.with_
        return reference
