"""
Detection aggregation: turns raw OCR polygons, face boxes and user literals
into a single ordered list of Region candidates.
"""

from typing import List, Optional, Sequence, Tuple

from .config import Category, DetectionConfig, Region, RegionSource
from .exceptions import InvalidRegion
from .logger import LoggerMixin
from .vision import FaceDetection, OCRAnnotation, polygon_bounds


ImageSize = Tuple[int, int]  # (width, height)


class DetectionAggregator(LoggerMixin):
    """
    Normalizes heterogeneous detections into Region candidates.

    Output order is stable: OCR regions in annotation order, then one
    user-literal region per matching OCR region, then faces.
    """

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def aggregate(
        self,
        annotations: Sequence[OCRAnnotation],
        faces: Optional[Sequence[FaceDetection]] = None,
        literals: Optional[Sequence[str]] = None,
        image_size: Optional[ImageSize] = None
    ) -> List[Region]:
        """
        Build the candidate list for one image.

        Args:
            annotations: OCR annotations from the vision service
            faces: Optional face boxes
            literals: User-supplied substrings to mask wherever they appear
            image_size: (width, height) used to clamp regions to the image

        Returns:
            Region candidates; OCR regions are left unclassified
        """
        ocr_regions = self.ocr_regions(annotations, image_size)
        literal_regions = self.literal_regions(ocr_regions, literals or [])
        face_regions = self.face_regions(faces or [], image_size)

        self.log_info(
            f"Aggregated {len(ocr_regions)} text, {len(literal_regions)} literal "
            f"and {len(face_regions)} face regions"
        )
        return ocr_regions + literal_regions + face_regions

    def ocr_regions(
        self,
        annotations: Sequence[OCRAnnotation],
        image_size: Optional[ImageSize] = None
    ) -> List[Region]:
        """Reduce OCR polygons to rectangles, dropping degenerate ones."""
        min_area = max(1, self.config.min_region_area)
        regions = []
        dropped = 0

        for annotation in annotations:
            if not annotation.text.strip():
                dropped += 1
                continue

            x1, y1, x2, y2 = polygon_bounds(annotation.polygon)
            try:
                region = Region.from_bbox(
                    x1, y1, x2, y2,
                    source=RegionSource.OCR_TEXT,
                    text=annotation.text
                )
                if image_size is not None:
                    region = region.clamp(*image_size)
            except InvalidRegion as e:
                self.log_debug(f"Dropping OCR region: {e}")
                dropped += 1
                continue

            if region.area < min_area:
                self.log_debug(f"Dropping OCR region below {min_area} px: {region.bbox}")
                dropped += 1
                continue

            regions.append(region)

        if dropped:
            self.log_info(f"Dropped {dropped} degenerate OCR annotations")
        return regions

    def face_regions(
        self,
        faces: Sequence[FaceDetection],
        image_size: Optional[ImageSize] = None
    ) -> List[Region]:
        """Tag face boxes as always-sensitive regions."""
        regions = []
        for face in faces:
            x, y, width, height = face.bounding_box
            try:
                region = Region(
                    x=x, y=y, width=width, height=height,
                    source=RegionSource.FACE,
                    sensitive=True
                )
                if image_size is not None:
                    region = region.clamp(*image_size)
            except InvalidRegion as e:
                self.log_warning(f"Dropping face region: {e}")
                continue
            regions.append(region)
        return regions

    def literal_regions(self, ocr_regions: Sequence[Region], literals: Sequence[str]) -> List[Region]:
        """Emit a user-literal region for each OCR region containing a literal."""
        lowered = [literal.lower() for literal in literals if literal]
        if not lowered:
            return []

        regions = []
        for region in ocr_regions:
            text = (region.text or "").lower()
            if any(literal in text for literal in lowered):
                regions.append(Region(
                    x=region.x, y=region.y, width=region.width, height=region.height,
                    source=RegionSource.USER_LITERAL,
                    text=region.text,
                    sensitive=True,
                    category=Category.USER_LITERAL
                ))
        return regions
