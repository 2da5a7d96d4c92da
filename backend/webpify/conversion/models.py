"""Conversion request/response models."""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from webpify.config import DEFAULT_QUALITY, MAX_QUALITY, MIN_QUALITY
from webpify.errors import ValidationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_quality(value: Any) -> int:
    """Clamp quality to [MIN_QUALITY, MAX_QUALITY]. Missing or non-numeric values give DEFAULT_QUALITY."""
    if value is None or isinstance(value, bool):
        return DEFAULT_QUALITY
    if isinstance(value, int):
        quality = value
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return DEFAULT_QUALITY
        if math.isnan(number):
            return DEFAULT_QUALITY
        if math.isinf(number):
            return MAX_QUALITY if number > 0 else MIN_QUALITY
        quality = int(number)
    return max(MIN_QUALITY, min(MAX_QUALITY, quality))


def parse_dimension(value: Any, name: str) -> Optional[int]:
    """
    Parse an optional target dimension. Empty or zero means absent, decimals are
    truncated. Negative or non-numeric values raise ValidationError.
    """
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = int(text)
        except ValueError:
            try:
                parsed = int(float(text))
            except (ValueError, OverflowError):
                raise ValidationError(f"Invalid {name}: {text!r} (expected a positive integer)")
    if parsed == 0:
        return None
    if parsed < 0:
        raise ValidationError(f"Invalid {name}: {parsed} (expected a positive integer)")
    return parsed


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int

    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class ConversionRequest:
    """Immutable conversion settings, shared by every item of a batch."""

    quality: int = DEFAULT_QUALITY
    target_width: Optional[int] = None
    target_height: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "quality", clamp_quality(self.quality))
        object.__setattr__(self, "target_width", parse_dimension(self.target_width, "width"))
        object.__setattr__(self, "target_height", parse_dimension(self.target_height, "height"))

    @classmethod
    def from_form(cls, quality: Any = None, width: Any = None, height: Any = None) -> "ConversionRequest":
        """Build from raw form strings. Quality is clamped; bad dimensions raise ValidationError."""
        return cls(quality=quality, target_width=width, target_height=height)

    @property
    def wants_resize(self) -> bool:
        return self.target_width is not None or self.target_height is not None


@dataclass(frozen=True)
class SourceAsset:
    """One staged upload. Consumed by exactly one conversion."""

    id: str
    original_name: str
    mime_type: str
    size_bytes: int
    storage_path: Path
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ConvertedAsset:
    storage_path: Path
    size_bytes: int
    original_filename: str
    original_size: int
    original_dimensions: Dimensions
    dimensions: Dimensions
    quality: int
    compression_ratio: float
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def filename(self) -> str:
        return self.storage_path.name


def compression_ratio(original_size: int, converted_size: int) -> float:
    """Percent saved, rounded to 2 decimals. Negative when the output is larger."""
    if original_size <= 0:
        return 0.0
    return round((original_size - converted_size) / original_size * 100, 2)
