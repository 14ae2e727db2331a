"""
Vision collaborator: OCR text annotations and face boxes for an image.

Provides a common interface plus a Google Cloud Vision implementation that
fetches both kinds of detections in a single request.
"""

import base64
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Dict, Any

import requests

from .config import VisionConfig
from .exceptions import DetectionFailed
from .http_utils import HTTPStatusError, ThreadLocalSession, post_json
from .logger import LoggerMixin


Vertex = Tuple[int, int]


@dataclass(frozen=True)
class OCRAnnotation:
    """A recognized string and the polygon it was read from."""
    text: str
    polygon: Tuple[Vertex, ...]


@dataclass(frozen=True)
class FaceDetection:
    """A detected face as (x, y, width, height)."""
    bounding_box: Tuple[int, int, int, int]
    confidence: Optional[float] = None


@dataclass
class VisionResult:
    """Everything the vision service reported for one image."""
    text_annotations: List[OCRAnnotation] = field(default_factory=list)
    faces: List[FaceDetection] = field(default_factory=list)


def polygon_bounds(polygon: Sequence[Vertex]) -> Tuple[int, int, int, int]:
    """
    Minimal enclosing axis-aligned rectangle of a polygon.

    Returns:
        (x1, y1, x2, y2); all zeros for an empty polygon
    """
    if not polygon:
        return (0, 0, 0, 0)
    xs = [int(x) for x, _ in polygon]
    ys = [int(y) for _, y in polygon]
    return (min(xs), min(ys), max(xs), max(ys))


class VisionClient(LoggerMixin):
    """Base class for vision services."""

    def annotate(self, image_bytes: bytes, detect_faces: bool = True) -> VisionResult:
        """
        Detect text (and optionally faces) in an encoded image.

        Args:
            image_bytes: Raw encoded image file content
            detect_faces: Whether face boxes are requested

        Returns:
            Vision result; empty lists when nothing was found

        Raises:
            DetectionFailed: If the service is unreachable or errored
        """
        raise NotImplementedError("Subclasses must implement annotate")


class GoogleVisionClient(VisionClient):
    """Google Cloud Vision ``images:annotate`` implementation."""

    def __init__(self, config: Optional[VisionConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or VisionConfig()
        self._session = session
        self._thread_sessions = ThreadLocalSession()

    @property
    def session(self) -> requests.Session:
        """Injected session, otherwise one per calling thread."""
        if self._session is not None:
            return self._session
        return self._thread_sessions.get()

    def _api_key(self) -> str:
        api_key = self.config.api_key or os.environ.get("GCP_API_KEY")
        if not api_key:
            raise DetectionFailed("GCP_API_KEY environment variable not set")
        return api_key

    def _build_request(self, image_bytes: bytes, detect_faces: bool) -> Dict[str, Any]:
        features = [{"type": "TEXT_DETECTION", "maxResults": self.config.max_results}]
        if detect_faces:
            features.append({"type": "FACE_DETECTION", "maxResults": self.config.max_results})

        return {
            "requests": [{
                "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                "features": features,
            }]
        }

    def annotate(self, image_bytes: bytes, detect_faces: bool = True) -> VisionResult:
        api_key = self._api_key()
        payload = self._build_request(image_bytes, detect_faces)

        try:
            body = post_json(
                self.session,
                self.config.endpoint,
                payload,
                params={"key": api_key},
                timeout=self.config.timeout_seconds,
                max_retries=self.config.max_retries,
            )
        except HTTPStatusError as e:
            self.log_error(f"Vision API request failed with status {e.status_code}")
            raise DetectionFailed(
                f"Vision API request failed with status {e.status_code}",
                details={"status_code": e.status_code}
            ) from e
        except requests.RequestException as e:
            raise DetectionFailed(f"Failed to send request to Google Cloud Vision API: {e}") from e
        except ValueError as e:
            raise DetectionFailed("Failed to parse Google Cloud Vision API response") from e

        try:
            result = self._parse_response(body)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DetectionFailed(f"Malformed Google Cloud Vision API response: {e}") from e

        self.log_info(
            f"Vision API returned {len(result.text_annotations)} text annotations "
            f"and {len(result.faces)} faces"
        )
        return result

    def _parse_response(self, body: Dict[str, Any]) -> VisionResult:
        responses = body.get("responses")
        if not responses:
            self.log_error("No responses from Google Cloud Vision API")
            raise DetectionFailed("No responses from Google Cloud Vision API")

        first = responses[0]
        if first.get("error"):
            error = first["error"]
            raise DetectionFailed(
                f"Vision API error: {error.get('message', 'unknown error')}",
                details=error
            )

        # Entry 0 is the whole-page block; the rest are individual words.
        annotations = []
        for entry in first.get("textAnnotations", [])[1:]:
            polygon = self._vertices(entry.get("boundingPoly"))
            if not polygon:
                self.log_debug("Skipping text annotation without bounding polygon")
                continue
            annotations.append(OCRAnnotation(text=entry.get("description", ""), polygon=polygon))

        faces = []
        for entry in first.get("faceAnnotations", []):
            polygon = self._vertices(entry.get("boundingPoly"))
            if not polygon:
                self.log_debug("Skipping face with empty bounding polygon")
                continue
            x1, y1, x2, y2 = polygon_bounds(polygon)
            faces.append(FaceDetection(
                bounding_box=(x1, y1, x2 - x1, y2 - y1),
                confidence=entry.get("detectionConfidence")
            ))

        return VisionResult(text_annotations=annotations, faces=faces)

    @staticmethod
    def _vertices(bounding_poly: Optional[Dict[str, Any]]) -> Tuple[Vertex, ...]:
        if not bounding_poly:
            return ()
        # Vision omits zero coordinates from the JSON.
        return tuple(
            (int(v.get("x", 0)), int(v.get("y", 0)))
            for v in bounding_poly.get("vertices", [])
        )
