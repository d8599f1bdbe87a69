import os
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def parse_ladder(raw: str) -> Tuple[int, ...]:
    """Parse a comma-separated quality ladder like '80,80,60,40'."""
    levels = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        q = int(part)
        if q < 1 or q > 100:
            raise ValueError(f"Quality level out of range (1-100): {q}")
        levels.append(q)
    if not levels:
        raise ValueError("Quality ladder must contain at least one level")
    return tuple(levels)


# Storage config: support S3 (MinIO) and local file storage
STORAGE_MODE = os.getenv('STORAGE_MODE', 'local').lower()  # 's3' or 'local'
STORAGE_DIR = Path((os.getenv('STORAGE_DIR', str(Path(__file__).resolve().parent / 'storage'))).strip()).resolve()
PUBLIC_BASE_URL = os.getenv('PUBLIC_BASE_URL', 'http://localhost:8010').rstrip('/')
S3_ENDPOINT = os.getenv('S3_ENDPOINT', 'http://localhost:9000')
S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', 'minio')
S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', 'minio123')
S3_BUCKET_OUTPUTS = os.getenv('S3_BUCKET_OUTPUTS', 'outputs')
PUBLIC_MINIO_BASE = os.getenv('PUBLIC_MINIO_BASE', 'http://localhost:9000').rstrip('/')

# Checkout frame geometry
CHECKOUT_WIDTH = int(os.getenv("CHECKOUT_WIDTH", "1080"))
CHECKOUT_HEIGHT = int(os.getenv("CHECKOUT_HEIGHT", "566"))
LOGO_MAX_HEIGHT = int(os.getenv("LOGO_MAX_HEIGHT", "382"))

# Size budget (kB, measured as data URL length * 2 / 1024)
MAX_ARTIFACT_KB = float(os.getenv("MAX_ARTIFACT_KB", "390"))
OVERSIZE_REPORT_KB = float(os.getenv("OVERSIZE_REPORT_KB", "400"))
DEFAULT_QUALITIES: Tuple[int, ...] = (100,)
QUALITY_LADDER = parse_ladder(os.getenv("QUALITY_LADDER", "80,80,60,40"))

# Font used for footer text and fallback labels
FONT_URL = os.getenv("FONT_URL", "https://s3.us-east-2.amazonaws.com/files.loopcrypto.xyz/fonts/Poppins-Medium.ttf").strip()
FONT_FAMILY = os.getenv("FONT_FAMILY", "Poppins")
FONT_WEIGHT = int(os.getenv("FONT_WEIGHT", "500"))

FALLBACK_LABEL = os.getenv("FALLBACK_LABEL", "Some company")
REPLACEMENTS_FILE = os.getenv("REPLACEMENTS_FILE", "").strip()

# Batch/fetch tuning
BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", "0"))  # 0 = unbounded
FETCH_TIMEOUT_S = float(os.getenv("FETCH_TIMEOUT_S", "30"))

# Also store a PNG rasterization of every artifact (requires CairoSVG + native cairo)
RENDER_RASTER = _env_bool("RENDER_RASTER")
