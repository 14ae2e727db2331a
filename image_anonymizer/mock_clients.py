"""
Offline stand-ins for the vision and text-classification services.
Used by the tests and by ``--offline`` runs when no API key is at hand.
"""

from typing import Dict, List, Optional, Sequence

from .config import Verdict
from .exceptions import ClassificationFailed, DetectionFailed
from .text_classifier import TextClassifier
from .vision import FaceDetection, OCRAnnotation, VisionClient, VisionResult


def _box(x: int, y: int, w: int, h: int):
    return ((x, y), (x + w, y), (x + w, y + h), (x, y + h))


DEMO_ANNOTATIONS = [
    OCRAnnotation("Contact", _box(20, 20, 80, 20)),
    OCRAnnotation("john.doe@example.com", _box(110, 20, 180, 20)),
    OCRAnnotation("+1-555-123-4567", _box(20, 50, 130, 20)),
    OCRAnnotation("4111111111111111", _box(20, 80, 150, 20)),
    OCRAnnotation("Jane", _box(20, 110, 50, 20)),
    OCRAnnotation("Smith", _box(75, 110, 55, 20)),
    OCRAnnotation("Submit", _box(20, 140, 60, 20)),
]

DEMO_VERDICTS = {
    "Jane": Verdict.PERSON_NAME,
    "Smith": Verdict.PERSON_NAME,
}


class MockVisionClient(VisionClient):
    """
    Vision client returning fixed detections.
    Annotations outside the image are left in; the aggregator clamps them.
    """

    def __init__(
        self,
        annotations: Optional[List[OCRAnnotation]] = None,
        faces: Optional[List[FaceDetection]] = None,
        error: Optional[Exception] = None
    ):
        self.annotations = list(DEMO_ANNOTATIONS if annotations is None else annotations)
        self.faces = list(faces or [])
        self.error = error
        self.calls = 0

    def annotate(self, image_bytes: bytes, detect_faces: bool = True) -> VisionResult:
        self.calls += 1
        if self.error is not None:
            raise DetectionFailed(f"Mock vision failure: {self.error}") from self.error
        self.log_info(f"MockVision returning {len(self.annotations)} fixed annotations")
        return VisionResult(
            text_annotations=list(self.annotations),
            faces=list(self.faces) if detect_faces else []
        )


class MockTextClassifier(TextClassifier):
    """Text classifier answering from a lookup table; unknown strings are ``neither``."""

    def __init__(
        self,
        verdicts: Optional[Dict[str, Verdict]] = None,
        truncate_to: Optional[int] = None,
        error: Optional[Exception] = None
    ):
        self.verdicts = dict(DEMO_VERDICTS if verdicts is None else verdicts)
        self.truncate_to = truncate_to
        self.error = error
        self.batches: List[List[str]] = []

    def classify(self, texts: Sequence[str]) -> List[Verdict]:
        self.batches.append(list(texts))
        if self.error is not None:
            raise ClassificationFailed(f"Mock classifier failure: {self.error}") from self.error
        result = [self.verdicts.get(text, Verdict.NEITHER) for text in texts]
        if self.truncate_to is not None:
            result = result[:self.truncate_to]
        return result
