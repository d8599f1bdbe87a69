from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

import settings
from errors import FailureReason


class ImageSize(BaseModel):
    """Pixel dimensions. (0, 0) means the dimensions could not be determined."""
    width: float = Field(0, ge=0)
    height: float = Field(0, ge=0)

    @property
    def known(self) -> bool:
        return self.width > 0 and self.height > 0

    @property
    def wide(self) -> bool:
        # Unknown dimensions are laid out like a wide logo
        return not self.known or self.width > self.height


class EncodedImage(BaseModel):
    payload: str  # base64 text
    mime_type: str
    metadata: ImageSize = Field(default_factory=ImageSize)
    quality: Optional[int] = None
    attempts: List[int] = Field(default_factory=list)
    # Trimmed/bounded logo dimensions when this is a composed checkout artifact
    logo: Optional[ImageSize] = None

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.payload}"


class FontResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    family: str
    weight: int = 400
    data: bytes


class LayoutTemplate(BaseModel):
    """Fixed checkout frame geometry (pixels). Shared read-only by all items."""
    model_config = ConfigDict(frozen=True)

    width: int = settings.CHECKOUT_WIDTH
    height: int = settings.CHECKOUT_HEIGHT
    padding_top: int = 64
    padding_x: int = 64
    padding_bottom: int = 40
    gap: int = 32
    logo_max_height: int = settings.LOGO_MAX_HEIGHT
    # (top, sides, bottom) inside the logo header
    wide_padding: Tuple[int, int, int] = (80, 64, 32)
    tall_padding: Tuple[int, int, int] = (32, 64, 40)
    footer_height: int = 48
    footer_gap: int = 24
    footer_font_size: int = 20
    footer_letter_spacing: float = 0.25  # em
    footer_text_padding_bottom: float = 3.2
    wordmark_width: int = 257
    background: str = "#fff"
    text_color: str = "#333"
    wordmark_color: str = "#555"
    label_width: int = 824

    @property
    def content_width(self) -> int:
        return self.width - 2 * self.padding_x

    @property
    def footer_y(self) -> int:
        return self.padding_top + self.logo_max_height + self.gap


DEFAULT_TEMPLATE = LayoutTemplate()


class BatchItem(BaseModel):
    index: int
    source_ref: str = ""


class ItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FALLBACK_SUCCEEDED = "fallback_succeeded"
    FALLBACK_FAILED = "fallback_failed"


class FailureInfo(BaseModel):
    reason: FailureReason
    benign: bool = False
    message: str = ""
    fallback_error: Optional[str] = None


class BatchItemResult(BaseModel):
    index: int
    source_ref: str
    status: ItemStatus
    destination: Optional[str] = None
    url: Optional[str] = None
    encoded_kb: Optional[float] = None
    source_kb: Optional[float] = None
    oversize: bool = False
    logo: Optional[ImageSize] = None
    failure: Optional[FailureInfo] = None


class OversizeDetail(BaseModel):
    index: int
    source_ref: str
    source_kb: Optional[float] = None
    encoded_kb: float
    logo: Optional[ImageSize] = None


class BatchReport(BaseModel):
    total: int
    succeeded: int
    oversize_threshold_kb: float
    oversize_count: int
    oversize: List[OversizeDetail] = Field(default_factory=list)
    failures: List[BatchItemResult] = Field(default_factory=list)
    printed_failures: List[BatchItemResult] = Field(default_factory=list)
    suppressed_failures: int = 0
    results: List[BatchItemResult] = Field(default_factory=list)

    @property
    def oversize_pct(self) -> float:
        return (self.oversize_count / self.succeeded * 100) if self.succeeded else 0.0


# API payloads
def _valid_qualities(v: List[int]) -> List[int]:
    if not v:
        raise ValueError("qualities must not be empty")
    if any(q < 1 or q > 100 for q in v):
        raise ValueError("qualities must be between 1 and 100")
    return v


class CheckoutImageRequest(BaseModel):
    source: str
    budget_kb: float = settings.MAX_ARTIFACT_KB
    qualities: List[int] = Field(default_factory=lambda: list(settings.DEFAULT_QUALITIES))
    store_as: Optional[str] = None

    @field_validator("qualities")
    @classmethod
    def _check_qualities(cls, v: List[int]) -> List[int]:
        return _valid_qualities(v)


class CheckoutImageResponse(BaseModel):
    data_url: str
    size_kb: float
    quality: Optional[int] = None
    attempts: List[int] = Field(default_factory=list)
    logo: ImageSize
    url: Optional[str] = None


class BatchRequest(BaseModel):
    sources: List[str]
    output_prefix: str = "checkout"
    budget_kb: float = settings.MAX_ARTIFACT_KB
    qualities: List[int] = Field(default_factory=lambda: list(settings.QUALITY_LADDER))

    @field_validator("qualities")
    @classmethod
    def _check_qualities(cls, v: List[int]) -> List[int]:
        return _valid_qualities(v)
