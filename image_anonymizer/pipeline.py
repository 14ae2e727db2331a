"""
Anonymization pipeline: detection, classification, merging and rendering
for one image, plus a thread-pool runner for independent images.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .aggregator import DetectionAggregator
from .classifier import SensitivityClassifier
from .config import AnonymizerConfig, MergedRegion, Region, RegionSource
from .exceptions import AnonymizerError, ClassificationFailed, DetectionFailed
from .logger import LoggerMixin
from .merger import RegionMerger
from .redactor import MaskRenderer, get_redaction_statistics
from .text_classifier import TextClassifier
from .vision import VisionClient


@dataclass
class PipelineResult:
    """Successful run: the masked buffer and how it was produced."""
    image: np.ndarray
    regions: List[Region]
    merged_regions: List[MergedRegion]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ImageJob:
    """One image of a batch, already decoded."""
    name: str
    image: np.ndarray
    image_bytes: bytes


@dataclass
class ImageOutcome:
    """Per-image result of a batch run; exactly one of result/error is set."""
    name: str
    result: Optional[PipelineResult] = None
    error: Optional[AnonymizerError] = None

    @property
    def success(self) -> bool:
        return self.error is None


class AnonymizationPipeline(LoggerMixin):
    """
    Sequences aggregation, classification, merge and render for an image.

    Nothing is retried here; collaborator clients own their retry policy.
    The pipeline holds no per-image state, so one instance can serve
    several images concurrently.
    """

    def __init__(
        self,
        config: Optional[AnonymizerConfig] = None,
        vision_client: Optional[VisionClient] = None,
        text_classifier: Optional[TextClassifier] = None
    ):
        if vision_client is None:
            raise ValueError("A vision client is required")

        self.config = config or AnonymizerConfig()
        self.vision_client = vision_client
        self.aggregator = DetectionAggregator(self.config.detection)
        self.classifier = SensitivityClassifier(self.config.classification, text_classifier)
        self.merger = RegionMerger(self.config.merge)
        self.renderer = MaskRenderer(self.config.redaction)

    def run(self, image: np.ndarray, image_bytes: bytes) -> PipelineResult:
        """
        Anonymize one image.

        Args:
            image: Decoded buffer (HxW or HxWxC), masked in place
            image_bytes: Encoded file content sent to the vision service

        Returns:
            Pipeline result holding the same, now masked, buffer

        Raises:
            DetectionFailed: Vision service failure
            ClassificationFailed: Text classifier failure or malformed batch
            RenderFailed: A merged region fell outside the buffer
        """
        start_time = time.time()
        height, width = image.shape[:2]
        detect_faces = self.config.detection.enable_face_masking
        literals = self.config.user_literals

        try:
            vision = self.vision_client.annotate(image_bytes, detect_faces=detect_faces)
        except AnonymizerError:
            raise
        except Exception as e:
            raise DetectionFailed(f"Vision client raised {type(e).__name__}: {e}") from e

        faces = vision.faces if detect_faces else []
        self.log_debug(f"Vision found {len(vision.text_annotations)} annotations and {len(faces)} faces")

        candidates = self.aggregator.aggregate(
            vision.text_annotations, faces, literals, image_size=(width, height)
        )
        regions = self.classifier.classify(candidates, literals)
        merged = self.merger.merge(regions)
        self.renderer.render(image, merged)

        metadata = {
            "image_size": [width, height],
            "text_annotations": len(vision.text_annotations),
            "faces": len(faces),
            "candidate_regions": len(candidates),
            "sensitive_text_regions": sum(
                1 for r in regions if r.source is RegionSource.OCR_TEXT and r.sensitive
            ),
            "processing_time_ms": (time.time() - start_time) * 1000,
        }
        metadata.update(get_redaction_statistics(merged))

        self.log_info(f"Masked {len(merged)} regions in {width}x{height} image")
        return PipelineResult(image=image, regions=regions, merged_regions=merged, metadata=metadata)

    def run_batch(self, jobs: Sequence[ImageJob], max_workers: int = 4) -> List[ImageOutcome]:
        """
        Anonymize independent images in parallel.

        Detection and classification failures only fail their own image.
        RenderFailed is not caught: it signals a bug and stops the batch.

        Returns:
            One outcome per job, in job order
        """
        outcomes = []
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            futures = [executor.submit(self.run, job.image, job.image_bytes) for job in jobs]

            for job, future in zip(jobs, futures):
                try:
                    outcomes.append(ImageOutcome(name=job.name, result=future.result()))
                except (DetectionFailed, ClassificationFailed) as e:
                    self.log_error(f"Failed to process {job.name}: {e}")
                    outcomes.append(ImageOutcome(name=job.name, error=e))
                except BaseException:
                    for pending in futures:
                        pending.cancel()
                    raise

        succeeded = sum(1 for o in outcomes if o.success)
        self.log_info(f"Batch complete: {succeeded}/{len(outcomes)} images processed")
        return outcomes
