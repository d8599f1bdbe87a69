import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import aiofiles
import boto3

import settings
from errors import RenderError
from imaging import DATA_URL_PREFIX_RE, split_data_url

logger = logging.getLogger(__name__)


def decode_artifact(data_url: str) -> bytes:
    """Strip the data URL prefix and decode the payload.

    SVG artifacts come back as their UTF-8 markup, rasters as their encoded bytes.
    """
    if not DATA_URL_PREFIX_RE.match(data_url or ""):
        raise ValueError("Artifact is not a base64 image data URL")
    _, raw = split_data_url(data_url)
    return raw


def _s3_client():
    return boto3.client(
        's3',
        endpoint_url=settings.S3_ENDPOINT,
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name='us-east-1'
    )


class ArtifactSink:
    """Persists checkout artifacts to local disk or S3 (MinIO)."""

    def __init__(
        self,
        mode: str = settings.STORAGE_MODE,
        storage_dir: Path = settings.STORAGE_DIR,
        bucket: str = settings.S3_BUCKET_OUTPUTS,
        s3_client: Any = None,
    ):
        self.mode = (mode or "local").lower()
        self.storage_dir = Path(storage_dir)
        self.bucket = bucket
        self._s3 = s3_client
        if self.mode == "s3" and self._s3 is None:
            self._s3 = _s3_client()

    def local_path(self, destination: str) -> Path:
        rel = destination.lstrip("/")
        path = (self.storage_dir / rel).resolve()
        if self.storage_dir.resolve() not in path.parents:
            raise ValueError(f"Destination escapes storage dir: {destination}")
        return path

    async def _write_local(self, destination: str, data: bytes, mime: str) -> str:
        file_path = self.local_path(destination)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if mime == "image/svg+xml":
            async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
                await f.write(data.decode("utf-8"))
        else:
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(data)
        return f"{settings.PUBLIC_BASE_URL}/static/{destination.lstrip('/')}"

    async def store(self, data_url: str, destination: str) -> str:
        """Persist an encoded artifact. Returns its public URL."""
        try:
            mime, raw = split_data_url(data_url)
        except ValueError as e:
            raise ValueError(f"Could not save the image to {destination!r}: {e}") from e
        return await self.store_bytes(raw, destination, mime)

    async def store_bytes(self, data: bytes, destination: str, mime: str) -> str:
        if self.mode != "s3":
            return await self._write_local(destination, data, mime)
        key = destination.lstrip("/")
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime,
            )
            return f"{settings.PUBLIC_MINIO_BASE}/{self.bucket}/{key}"
        except Exception as e:
            logger.error(f"S3 upload failed for {self.bucket}/{key}: {e}. Falling back to local storage.")
            return await self._write_local(destination, data, mime)


def rasterize_svg(svg_text: str, width: Optional[int] = None, height: Optional[int] = None) -> bytes:
    """Render an SVG document to PNG with CairoSVG (imported lazily; needs native cairo)."""
    try:
        import cairosvg  # type: ignore
    except (ImportError, OSError) as e:
        raise RenderError(f"CairoSVG unavailable: {e}") from e
    try:
        return cairosvg.svg2png(
            bytestring=svg_text.encode("utf-8"),
            output_width=width,
            output_height=height,
        )
    except Exception as e:
        raise RenderError(f"Failed to rasterize SVG: {e}") from e
