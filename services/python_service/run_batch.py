#!/usr/bin/env python3
"""Encode a list of logo references into checkout artifacts.

Usage: python run_batch.py sources.txt [--out checkout] [--budget 390] [--ladder 80,80,60,40]

One reference per line; blank lines and "-" are kept so item indexes match
the input line numbers. Failures are reported, not fatal.
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import httpx

import settings
from batch import BatchConfig, items_from_sources, run_batch
from models import BatchReport
from sources import FontResolver, ReplacementTable
from storage import ArtifactSink

logger = logging.getLogger(__name__)


def read_sources(path: Path) -> List[str]:
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]


def _ladder(raw: str):
    try:
        return settings.parse_ladder(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Encode logos into checkout artifacts under a size budget.")
    p.add_argument("sources", type=Path, help="Text file with one logo URL/path per line")
    p.add_argument("--out", default="checkout", help="Destination prefix under the storage root")
    p.add_argument("--budget", type=float, default=settings.MAX_ARTIFACT_KB, help="Per-item budget in kB")
    p.add_argument("--ladder", type=_ladder, default=settings.QUALITY_LADDER, help="Comma-separated quality levels")
    p.add_argument("--concurrency", type=int, default=settings.BATCH_CONCURRENCY, help="Max items in flight (0 = unbounded)")
    p.add_argument("--report", type=Path, default=None, help="Also write the report as JSON")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


async def _run(sources: List[str], args: argparse.Namespace) -> BatchReport:
    config = BatchConfig(
        budget_kb=args.budget,
        qualities=args.ladder,
        output_prefix=args.out.strip("/") or "checkout",
        concurrency=max(0, args.concurrency),
    )
    async with httpx.AsyncClient(timeout=settings.FETCH_TIMEOUT_S) as client:
        return await run_batch(
            items_from_sources(sources),
            font_resolver=FontResolver.from_settings(client),
            sink=ArtifactSink(),
            config=config,
            replacements=ReplacementTable.from_settings(),
            client=client,
        )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        sources = read_sources(args.sources)
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Cannot read {args.sources}: {e}")
        return 2

    report = asyncio.run(_run(sources, args))
    if args.report:
        body = report.model_dump(mode="json")
        body["oversize_pct"] = round(report.oversize_pct, 2)
        args.report.write_text(json.dumps(body, indent=2), encoding="utf-8")
        logger.info(f"Report written to {args.report}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
