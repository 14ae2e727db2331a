"""
Configuration management for the image anonymizer pipeline.

Defines data classes and enums for configuration and for the regions that
flow between pipeline stages.
"""

import json
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple, Iterable, Union

from .exceptions import InvalidRegion
from .logger import parse_level


class RegionSource(Enum):
    """Which detector produced a region."""
    OCR_TEXT = "ocr_text"
    FACE = "face"
    USER_LITERAL = "user_literal"


class MaskKind(Enum):
    """Mask rendering modes."""
    SOLID = "solid"
    MOSAIC = "mosaic"


class Category(Enum):
    """Classification tags assigned by deterministic rules."""
    USER_LITERAL = "user_literal"
    EMAIL = "email"
    PHONE = "phone"
    CREDIT_CARD = "credit_card"
    API_KEY = "api_key"


class Verdict(Enum):
    """Per-string answer from the external text classifier."""
    PERSON_NAME = "person_name"
    COMPANY_NAME = "company_name"
    NEITHER = "neither"


RULE_CATEGORIES = [Category.EMAIL, Category.PHONE, Category.CREDIT_CARD, Category.API_KEY]


class _RectMixin:
    """Geometry helpers shared by Region and MergedRegion (half-open rectangles)."""

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        """Bounding box as (x1, y1, x2, y2)."""
        return (self.x, self.y, self.x2, self.y2)


@dataclass(frozen=True)
class Region(_RectMixin):
    """
    Axis-aligned detection candidate in image pixel coordinates.

    ``sensitive`` is None until the classifier has resolved the region.
    Regions are immutable; stages derive new instances with ``classified``.
    """
    x: int
    y: int
    width: int
    height: int
    source: RegionSource
    text: Optional[str] = None
    sensitive: Optional[bool] = None
    category: Optional[Category] = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidRegion(
                f"Region must have positive size, got {self.width}x{self.height}",
                details={"bbox": (self.x, self.y, self.width, self.height)}
            )
        if self.source in (RegionSource.FACE, RegionSource.USER_LITERAL) and self.sensitive is not True:
            raise ValueError(f"{self.source.value} regions are always sensitive")

    @classmethod
    def from_bbox(cls, x1: int, y1: int, x2: int, y2: int, **kwargs) -> "Region":
        """Create a region from corner coordinates."""
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1, **kwargs)

    def clamp(self, image_width: int, image_height: int) -> "Region":
        """
        Clip the region to the image bounds.

        Raises:
            InvalidRegion: If nothing of the region is left inside the image
        """
        x1 = min(max(self.x, 0), image_width)
        y1 = min(max(self.y, 0), image_height)
        x2 = min(max(self.x2, 0), image_width)
        y2 = min(max(self.y2, 0), image_height)
        if (x1, y1, x2, y2) == self.bbox:
            return self
        return replace(self, x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    def classified(self, sensitive: bool, category: Optional[Category] = None) -> "Region":
        """Return a copy carrying the classification outcome."""
        return replace(self, sensitive=sensitive, category=category)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON reports; recognized text is left out."""
        return {
            "bbox": [self.x, self.y, self.width, self.height],
            "source": self.source.value,
            "sensitive": self.sensitive,
            "category": self.category.value if self.category else None
        }


@dataclass(frozen=True)
class MergedRegion(_RectMixin):
    """Final non-overlapping rectangle scheduled for masking."""
    x: int
    y: int
    width: int
    height: int
    mask_kind: MaskKind
    sources: Tuple[Region, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bbox": [self.x, self.y, self.width, self.height],
            "mask_kind": self.mask_kind.value,
            "sources": [s.to_dict() for s in self.sources]
        }


@dataclass
class VisionConfig:
    """Configuration for the vision (OCR and face detection) service."""
    endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    max_results: int = 100
    timeout_seconds: float = 30.0
    max_retries: int = 3
    api_key: Optional[str] = None  # falls back to GCP_API_KEY


@dataclass
class ClassificationConfig:
    """Configuration for sensitivity classification."""
    enabled_categories: List[Category] = field(
        default_factory=lambda: list(RULE_CATEGORIES)
    )
    api_key_min_length: int = 20
    api_key_min_entropy: float = 3.0
    api_key_min_run_ratio: float = 0.3
    use_external_classifier: bool = True
    mask_personal_names: bool = True
    mask_company_names: bool = True
    model: str = field(
        default_factory=lambda: os.environ.get("GEMINI_MODEL", "gemini-2.0-flash-lite")
    )
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    api_key: Optional[str] = None  # falls back to GCP_API_KEY

    def __post_init__(self):
        self.enabled_categories = [
            c if isinstance(c, Category) else Category(c) for c in self.enabled_categories
        ]
        if self.api_key_min_length < 1:
            raise ValueError("api_key_min_length must be positive")
        if not 0.0 <= self.api_key_min_run_ratio <= 1.0:
            raise ValueError("api_key_min_run_ratio must be between 0 and 1")


@dataclass
class DetectionConfig:
    """Configuration for detection aggregation."""
    min_region_area: int = 4
    enable_face_masking: bool = True

    def __post_init__(self):
        if self.min_region_area < 0:
            raise ValueError("min_region_area must not be negative")


@dataclass
class RedactionConfig:
    """Configuration for mask rendering."""
    mask_color: Tuple[int, int, int] = (255, 0, 255)  # RGB magenta
    mosaic_block_size: int = 16

    def __post_init__(self):
        self.mask_color = tuple(int(c) for c in self.mask_color)
        if len(self.mask_color) != 3 or not all(0 <= c <= 255 for c in self.mask_color):
            raise ValueError(f"mask_color must be three values in 0..255, got {self.mask_color}")
        if self.mosaic_block_size < 1:
            raise ValueError("mosaic_block_size must be positive")


@dataclass
class MergeConfig:
    """Configuration for region consolidation."""
    touch_tolerance: int = 1

    def __post_init__(self):
        if self.touch_tolerance < 0:
            raise ValueError("touch_tolerance must not be negative")


def normalize_literals(literals: Optional[Iterable[str]]) -> List[str]:
    """Trim literals, drop empty ones and remove case-insensitive duplicates."""
    result = []
    seen = set()
    for literal in literals or []:
        literal = literal.strip()
        key = literal.lower()
        if literal and key not in seen:
            seen.add(key)
            result.append(literal)
    return result


_SECTIONS = {
    "vision": VisionConfig,
    "classification": ClassificationConfig,
    "detection": DetectionConfig,
    "redaction": RedactionConfig,
    "merge": MergeConfig,
}


@dataclass
class AnonymizerConfig:
    """Main configuration class for the anonymizer pipeline."""
    vision: VisionConfig = field(default_factory=VisionConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    redaction: RedactionConfig = field(default_factory=RedactionConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)

    user_literals: List[str] = field(default_factory=list)
    log_level: str = "INFO"

    def __post_init__(self):
        self.user_literals = normalize_literals(self.user_literals)
        parse_level(self.log_level)
        self.log_level = self.log_level.upper()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnonymizerConfig":
        """Build a configuration from nested dictionaries, one per section."""
        kwargs = {}
        for key, value in data.items():
            if key in _SECTIONS:
                section_cls = _SECTIONS[key]
                allowed = {f.name for f in fields(section_cls)}
                unknown = set(value) - allowed
                if unknown:
                    raise ValueError(f"Unknown {key} settings: {sorted(unknown)}")
                kwargs[key] = section_cls(**value)
            elif key in ("user_literals", "log_level"):
                kwargs[key] = value
            else:
                raise ValueError(f"Unknown configuration section: {key}")
        return cls(**kwargs)


def load_config(config_path: Optional[Union[str, Path]] = None) -> AnonymizerConfig:
    """Load configuration from a JSON file or use defaults."""
    if not config_path:
        return AnonymizerConfig()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config_data = json.load(f)

    return AnonymizerConfig.from_dict(config_data)
