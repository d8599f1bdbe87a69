"""Error taxonomy for the checkout image pipeline.

Every error carries a FailureReason. Whether a failure is benign (an empty or
placeholder source reference that is expected in bulk input) is decided where
the error is raised, not by matching the rendered message later.
"""
from enum import Enum
from typing import Optional, Sequence


class FailureReason(str, Enum):
    FETCH_FAILED = "fetch_failed"
    EMPTY_SOURCE = "empty_source"
    PLACEHOLDER_SOURCE = "placeholder_source"
    FONT_UNAVAILABLE = "font_unavailable"
    DECODE_FAILED = "decode_failed"
    BUDGET_EXCEEDED = "budget_exceeded"
    RENDER_FAILED = "render_failed"
    UNEXPECTED = "unexpected"

    @property
    def benign(self) -> bool:
        return self in (FailureReason.EMPTY_SOURCE, FailureReason.PLACEHOLDER_SOURCE)


class CheckoutImageError(Exception):
    default_reason = FailureReason.UNEXPECTED

    def __init__(self, message: str, reason: Optional[FailureReason] = None):
        super().__init__(message)
        self.reason = reason or self.default_reason

    @property
    def benign(self) -> bool:
        return self.reason.benign


class FetchError(CheckoutImageError):
    """Source or font bytes could not be retrieved."""
    default_reason = FailureReason.FETCH_FAILED


class DecodeError(CheckoutImageError):
    """Raster bytes are malformed or in an unsupported format."""
    default_reason = FailureReason.DECODE_FAILED


class RenderError(CheckoutImageError):
    """Layout could not be rendered (unusable font, rasterizer failure)."""
    default_reason = FailureReason.RENDER_FAILED


class BudgetExceededError(CheckoutImageError):
    """Every level of the quality ladder produced an artifact over budget."""
    default_reason = FailureReason.BUDGET_EXCEEDED

    def __init__(self, budget_kb: float, qualities: Sequence[int], last_size_kb: Optional[float] = None):
        self.budget_kb = budget_kb
        self.qualities = tuple(qualities)
        self.last_size_kb = last_size_kb
        msg = f"Failed to encode an image smaller than {budget_kb:g}kB (qualities={list(self.qualities)}"
        if last_size_kb is not None:
            msg += f", last={last_size_kb:.2f}kB"
        msg += ")"
        super().__init__(msg)
