import os
import asyncio
import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware

import settings
from batch import BatchConfig, items_from_sources, run_batch
from encoder import encode
from errors import (
    BudgetExceededError,
    CheckoutImageError,
    DecodeError,
    FetchError,
    RenderError,
)
from imaging import size_of
from models import BatchRequest, CheckoutImageRequest, CheckoutImageResponse, EncodedImage
from sources import FontResolver, ReplacementTable
from storage import ArtifactSink, decode_artifact, rasterize_svg

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

font_resolver = FontResolver.from_settings()
sink = ArtifactSink()
replacements = ReplacementTable.from_settings()

app = FastAPI(title="Checkout Image Service", version="1.0.0")

# CORS middleware: configure via CORS_ALLOW_ORIGINS env (comma-separated). Defaults are dev-friendly.
origins_env = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
if not origins_env:
    allow_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8010",
        "http://127.0.0.1:8010",
        "*",
    ]
else:
    allow_origins = [o.strip() for o in origins_env.split(",") if o.strip()]
# If wildcard is present, set credentials False and pass ["*"] per Starlette rules
use_wildcard = "*" in allow_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if use_wildcard else allow_origins,
    allow_credentials=False if use_wildcard else True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Local artifacts are served from /static (matches ArtifactSink public URLs)
try:
    settings.STORAGE_DIR.mkdir(parents=True, exist_ok=True)
    app.mount("/static", StaticFiles(directory=str(settings.STORAGE_DIR)), name="static")
except OSError as _e:
    logger.warning(f"Static mount skipped for {settings.STORAGE_DIR}: {_e}")


def _status_for(e: CheckoutImageError) -> int:
    if isinstance(e, FetchError):
        return 404 if e.benign else 502
    if isinstance(e, DecodeError):
        return 422
    if isinstance(e, BudgetExceededError):
        return 413
    return 500


def _http_error(e: CheckoutImageError) -> HTTPException:
    status = _status_for(e)
    if status >= 500:
        logger.error(f"{e.reason.value}: {e}")
    else:
        logger.warning(f"{e.reason.value}: {e}")
    return HTTPException(status_code=status, detail={"reason": e.reason.value, "message": str(e)})


async def _encode_request(req: CheckoutImageRequest) -> EncodedImage:
    try:
        font = await font_resolver.get()
        return await encode(
            replacements.apply(req.source),
            font=font,
            budget_kb=req.budget_kb,
            qualities=req.qualities,
        )
    except CheckoutImageError as e:
        raise _http_error(e)


@app.post("/checkout-image")
async def checkout_image(req: CheckoutImageRequest):
    """Encode one logo into the checkout frame and return it as a data URL."""
    artifact = await _encode_request(req)
    url = None
    if req.store_as:
        try:
            url = await sink.store(artifact.data_url, req.store_as)
        except (OSError, ValueError) as e:
            logger.error(f"Error storing artifact to {req.store_as}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
    data_url = artifact.data_url
    return CheckoutImageResponse(
        data_url=data_url,
        size_kb=round(size_of(data_url), 2),
        quality=artifact.quality,
        attempts=artifact.attempts,
        logo=artifact.logo,
        url=url,
    ).model_dump()


@app.post("/checkout-image/render")
async def checkout_image_render(req: CheckoutImageRequest):
    """Same as /checkout-image but returns the image itself (PNG when CairoSVG is available)."""
    artifact = await _encode_request(req)
    svg_bytes = decode_artifact(artifact.data_url)
    try:
        png = await asyncio.to_thread(
            rasterize_svg, svg_bytes.decode("utf-8"), int(artifact.metadata.width), int(artifact.metadata.height)
        )
        return Response(content=png, media_type="image/png")
    except RenderError as e:
        logger.warning(f"Returning SVG instead of PNG: {e}")
        return Response(content=svg_bytes, media_type="image/svg+xml")


@app.post("/checkout-image/batch")
async def checkout_image_batch(req: BatchRequest):
    """Encode and persist many logos; failures fall back to a text label."""
    try:
        config = BatchConfig(
            budget_kb=req.budget_kb,
            qualities=tuple(req.qualities),
            output_prefix=req.output_prefix.strip("/") or "checkout",
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    report = await run_batch(
        items_from_sources(req.sources),
        font_resolver=font_resolver,
        sink=sink,
        config=config,
        replacements=replacements,
    )
    body: Dict[str, Any] = report.model_dump(mode="json")
    body["oversize_pct"] = round(report.oversize_pct, 2)
    return body


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "checkout-image-service",
        "storage_mode": sink.mode,
        "max_artifact_kb": settings.MAX_ARTIFACT_KB,
        "quality_ladder": list(settings.QUALITY_LADDER),
        "font": f"{settings.FONT_FAMILY} ({settings.FONT_WEIGHT})",
        "raster_enabled": bool(settings.RENDER_RASTER),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8010)
