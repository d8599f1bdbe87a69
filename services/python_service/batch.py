"""Batch orchestration: many logos -> checkout artifacts, one task per item.

Items never share mutable state. Each task returns a BatchItemResult and the
report is reduced once, after every task has settled.
"""
import asyncio
import contextlib
import logging
from typing import List, Optional, Sequence, Tuple, Union

import httpx
from pydantic import BaseModel, ConfigDict

import settings
from encoder import encode
from errors import CheckoutImageError, FailureReason, RenderError
from imaging import size_of
from layout import render_text_label
from models import (
    DEFAULT_TEMPLATE,
    BatchItem,
    BatchItemResult,
    BatchReport,
    EncodedImage,
    FailureInfo,
    ItemStatus,
    LayoutTemplate,
    OversizeDetail,
)
from sources import FontResolver, ReplacementTable, source_size_bytes
from storage import ArtifactSink, decode_artifact, rasterize_svg

logger = logging.getLogger(__name__)


class BatchConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    budget_kb: float = settings.MAX_ARTIFACT_KB
    qualities: Tuple[int, ...] = settings.QUALITY_LADDER
    fallback_qualities: Tuple[int, ...] = settings.DEFAULT_QUALITIES
    oversize_kb: float = settings.OVERSIZE_REPORT_KB
    output_prefix: str = "checkout"
    fallback_label: str = settings.FALLBACK_LABEL
    concurrency: int = settings.BATCH_CONCURRENCY
    render_raster: bool = settings.RENDER_RASTER
    template: LayoutTemplate = DEFAULT_TEMPLATE


def items_from_sources(sources: Sequence[str]) -> List[BatchItem]:
    return [BatchItem(index=i, source_ref=s or "") for i, s in enumerate(sources)]


async def _persist(
    artifact: EncodedImage,
    index: int,
    sink: ArtifactSink,
    config: BatchConfig,
) -> Tuple[str, str]:
    destination = f"{config.output_prefix}/{index}.svg"
    url = await sink.store(artifact.data_url, destination)
    if config.render_raster:
        try:
            svg_text = decode_artifact(artifact.data_url).decode("utf-8")
            png = await asyncio.to_thread(rasterize_svg, svg_text, config.template.width, config.template.height)
            await sink.store_bytes(png, f"{config.output_prefix}/{index}.png", "image/png")
        except RenderError as e:
            logger.warning(f"{index}: skipping PNG rasterization: {e}")
    return destination, url


async def build_fallback(
    font_resolver: FontResolver,
    config: BatchConfig,
    client: Optional[httpx.AsyncClient] = None,
) -> EncodedImage:
    """Render the placeholder company name and run it through the full pipeline."""
    font = await font_resolver.get()
    label_svg = await asyncio.to_thread(
        render_text_label, config.fallback_label, font=font, width=config.template.label_width
    )
    return await encode(
        label_svg,
        font=font,
        budget_kb=config.budget_kb,
        qualities=config.fallback_qualities,
        template=config.template,
        client=client,
    )


def _unexpected(error: Exception) -> CheckoutImageError:
    return CheckoutImageError(f"{type(error).__name__}: {error}", FailureReason.UNEXPECTED)


async def _fallback(
    item: BatchItem,
    error: CheckoutImageError,
    font_resolver: FontResolver,
    sink: ArtifactSink,
    config: BatchConfig,
    client: Optional[httpx.AsyncClient],
) -> BatchItemResult:
    failure = FailureInfo(reason=error.reason, benign=error.benign, message=str(error))
    if error.benign:
        logger.info(f"{item.index}: {error}; using fallback label")
    else:
        logger.warning(f"{item.index}: could not build the checkout image ({error}); using fallback label")
    try:
        artifact = await build_fallback(font_resolver, config, client)
        destination, url = await _persist(artifact, item.index, sink, config)
    except Exception as e:
        failure.fallback_error = str(e) if isinstance(e, CheckoutImageError) else f"{type(e).__name__}: {e}"
        logger.error(f"{item.index}: fallback failed: {e}")
        return BatchItemResult(
            index=item.index,
            source_ref=item.source_ref,
            status=ItemStatus.FALLBACK_FAILED,
            failure=failure,
        )
    return BatchItemResult(
        index=item.index,
        source_ref=item.source_ref,
        status=ItemStatus.FALLBACK_SUCCEEDED,
        destination=destination,
        url=url,
        encoded_kb=size_of(artifact.data_url),
        logo=artifact.logo,
        failure=failure,
    )


async def process_item(
    item: BatchItem,
    *,
    font_resolver: FontResolver,
    sink: ArtifactSink,
    config: BatchConfig,
    replacements: ReplacementTable,
    client: Optional[httpx.AsyncClient] = None,
) -> BatchItemResult:
    """Pending -> Encoding -> Succeeded, or Failed -> fallback."""
    reference = replacements.apply(item.source_ref)
    if reference != item.source_ref:
        logger.debug(f"{item.index}: replaced {item.source_ref} -> {reference}")
    try:
        font = await font_resolver.get()
        artifact = await encode(
            reference,
            font=font,
            budget_kb=config.budget_kb,
            qualities=config.qualities,
            template=config.template,
            client=client,
        )
    except CheckoutImageError as e:
        return await _fallback(item, e, font_resolver, sink, config, client)
    except Exception as e:
        logger.exception(f"{item.index}: unexpected error while encoding")
        return await _fallback(item, _unexpected(e), font_resolver, sink, config, client)

    encoded_kb = size_of(artifact.data_url)
    source_bytes = await source_size_bytes(reference, client)
    source_kb = source_bytes / 1024 if source_bytes >= 0 else None
    try:
        destination, url = await _persist(artifact, item.index, sink, config)
    except Exception as e:
        logger.error(f"{item.index}: could not store the checkout image: {e}")
        return await _fallback(item, _unexpected(e), font_resolver, sink, config, client)

    if source_kb:
        logger.info(f"{item.index}, {source_kb:.2f}kB ---> {encoded_kb:.2f}kB ({encoded_kb / source_kb:.2f}x)")
    else:
        logger.info(f"{item.index}, ?kB ---> {encoded_kb:.2f}kB")
    oversize = encoded_kb > config.oversize_kb
    if oversize:
        logger.info(f"    {item.source_ref} ({artifact.logo.width:g} x {artifact.logo.height:g})")
    return BatchItemResult(
        index=item.index,
        source_ref=item.source_ref,
        status=ItemStatus.SUCCEEDED,
        destination=destination,
        url=url,
        encoded_kb=encoded_kb,
        source_kb=source_kb,
        oversize=oversize,
        logo=artifact.logo,
    )


def summarize(
    items: Sequence[BatchItem],
    outcomes: Sequence[Union[BatchItemResult, BaseException]],
    config: BatchConfig,
) -> BatchReport:
    results: List[BatchItemResult] = []
    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, BatchItemResult):
            results.append(outcome)
            continue
        # process_item itself raised (e.g. cancelled); no fallback ran
        results.append(BatchItemResult(
            index=item.index,
            source_ref=item.source_ref,
            status=ItemStatus.FALLBACK_FAILED,
            failure=FailureInfo(reason=FailureReason.UNEXPECTED, message=f"{type(outcome).__name__}: {outcome}"),
        ))
    results.sort(key=lambda r: r.index)

    succeeded = [r for r in results if r.status == ItemStatus.SUCCEEDED]
    oversize = [
        OversizeDetail(index=r.index, source_ref=r.source_ref, source_kb=r.source_kb, encoded_kb=r.encoded_kb, logo=r.logo)
        for r in succeeded if r.oversize
    ]
    failures = [r for r in results if r.failure is not None]
    printed = [r for r in failures if not r.failure.benign]
    return BatchReport(
        total=len(results),
        succeeded=len(succeeded),
        oversize_threshold_kb=config.oversize_kb,
        oversize_count=len(oversize),
        oversize=oversize,
        failures=failures,
        printed_failures=printed,
        suppressed_failures=len(failures) - len(printed),
        results=results,
    )


def log_report(report: BatchReport) -> None:
    for r in report.printed_failures:
        msg = f"{r.index}: {r.source_ref!r}: {r.failure.message}"
        if r.failure.fallback_error:
            msg += f" (fallback failed: {r.failure.fallback_error})"
        logger.error(msg)
    for o in report.oversize:
        logger.info(f"Oversize: {o.index} {o.source_ref} {o.encoded_kb:.2f}kB")
    logger.info(
        f"Images over {report.oversize_threshold_kb:g}kB: {report.oversize_count} of {report.succeeded} "
        f"({report.oversize_pct:.1f}%)"
    )
    logger.info(
        f"Processed {report.total}: {report.succeeded} succeeded, {len(report.failures)} failed "
        f"({report.suppressed_failures} placeholder/empty sources not listed)"
    )


async def run_batch(
    items: Sequence[BatchItem],
    *,
    font_resolver: FontResolver,
    sink: ArtifactSink,
    config: Optional[BatchConfig] = None,
    replacements: Optional[ReplacementTable] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> BatchReport:
    config = config or BatchConfig()
    replacements = replacements or ReplacementTable()
    sem = asyncio.Semaphore(config.concurrency) if config.concurrency > 0 else None

    async def _run(item: BatchItem) -> BatchItemResult:
        async with (sem if sem is not None else contextlib.nullcontext()):
            return await process_item(
                item,
                font_resolver=font_resolver,
                sink=sink,
                config=config,
                replacements=replacements,
                client=client,
            )

    logger.info(f"Encoding {len(items)} images (budget={config.budget_kb:g}kB, qualities={list(config.qualities)})")
    outcomes = await asyncio.gather(*(_run(item) for item in items), return_exceptions=True)
    report = summarize(items, outcomes, config)
    log_report(report)
    return report
