"""
image_anonymizer - masks personally identifiable information and faces in still images.

This package provides tools for:
- Collecting OCR text and face detections from a vision service
- Classifying text as sensitive with pattern rules and a batched LLM call
- Merging overlapping detections into non-overlapping mask regions
- Rendering solid masks over text and mosaics over faces
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .config import (
    AnonymizerConfig,
    Category,
    MaskKind,
    MergedRegion,
    Region,
    RegionSource,
    Verdict,
)
from .exceptions import (
    AnonymizerError,
    ClassificationFailed,
    DetectionFailed,
    InvalidRegion,
    RenderFailed,
)
from .logger import get_logger
from .pipeline import AnonymizationPipeline, ImageJob, ImageOutcome, PipelineResult

__all__ = [
    "AnonymizerConfig",
    "Category",
    "MaskKind",
    "MergedRegion",
    "Region",
    "RegionSource",
    "Verdict",
    "AnonymizerError",
    "ClassificationFailed",
    "DetectionFailed",
    "InvalidRegion",
    "RenderFailed",
    "AnonymizationPipeline",
    "ImageJob",
    "ImageOutcome",
    "PipelineResult",
    "get_logger",
]
