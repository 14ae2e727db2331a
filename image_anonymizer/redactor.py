"""
Mask rendering for merged regions, plus image load/save helpers.

Text and literal regions get an opaque fill; faces get a mosaic made of
block-averaged squares. Buffers are numpy arrays in OpenCV's BGR order.
"""

from typing import Optional, Union, Tuple, Dict, Any, Sequence
from pathlib import Path
import numpy as np
import cv2
from PIL import Image

from .config import MaskKind, MergedRegion, RedactionConfig
from .exceptions import RenderFailed
from .logger import LoggerMixin


class MaskRenderer(LoggerMixin):
    """
    Applies solid or mosaic masks to an image buffer in place.
    """

    def __init__(self, config: Optional[RedactionConfig] = None):
        """
        Initialize renderer.

        Args:
            config: Redaction configuration
        """
        self.config = config or RedactionConfig()

    def render(self, image: np.ndarray, regions: Sequence[MergedRegion]) -> np.ndarray:
        """
        Mask every region of the buffer.

        Mosaic regions are rendered first and solid regions last, each group
        in the given order, so a solid fill is never averaged into a mosaic.

        All rectangles are checked before the first pixel is written, so a
        bad region leaves the buffer untouched.

        Args:
            image: HxW or HxWxC buffer, modified in place
            regions: Merged regions from the merger

        Returns:
            The same buffer

        Raises:
            RenderFailed: If a region lies outside the buffer or repeats
        """
        self._validate(image, regions)

        for region in regions:
            if region.mask_kind is MaskKind.MOSAIC:
                self._apply_mosaic(image, region.bbox)
        for region in regions:
            if region.mask_kind is MaskKind.SOLID:
                self._apply_mask(image, region.bbox)

        self.log_info(f"Rendered {len(regions)} masked regions")
        return image

    def _validate(self, image: np.ndarray, regions: Sequence[MergedRegion]) -> None:
        if not isinstance(image, np.ndarray) or image.ndim not in (2, 3):
            raise RenderFailed("Image buffer must be a 2-D or 3-D numpy array")
        if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
            raise RenderFailed(f"Unsupported channel count: {image.shape[2]}")

        height, width = image.shape[:2]
        seen = set()

        for region in regions:
            if region.mask_kind not in (MaskKind.SOLID, MaskKind.MOSAIC):
                raise RenderFailed(f"Unknown mask kind: {region.mask_kind}")
            x1, y1, x2, y2 = region.bbox
            if region.width <= 0 or region.height <= 0 or x1 < 0 or y1 < 0 or x2 > width or y2 > height:
                raise RenderFailed(
                    f"Region {region.bbox} outside {width}x{height} image",
                    details={"bbox": region.bbox, "image_size": (width, height)}
                )
            key = (region.bbox, region.mask_kind)
            if key in seen:
                raise RenderFailed(f"Region {region.bbox} scheduled twice", details={"bbox": region.bbox})
            seen.add(key)

    def _fill_value(self, image: np.ndarray) -> Union[int, Tuple[int, ...]]:
        """Configured RGB mask color in the buffer's channel layout."""
        r, g, b = self.config.mask_color
        channels = 1 if image.ndim == 2 else image.shape[2]

        if channels == 1:
            gray = int(round(0.299 * r + 0.587 * g + 0.114 * b))
            return gray if image.ndim == 2 else (gray,)
        if channels == 3:
            return (b, g, r)
        return (b, g, r, 255)

    def _apply_mask(self, image: np.ndarray, bbox: Tuple[int, int, int, int]) -> None:
        """
        Apply solid color mask to specified region.

        Args:
            image: Image array
            bbox: Bounding box (x1, y1, x2, y2)
        """
        x1, y1, x2, y2 = bbox
        image[y1:y2, x1:x2] = self._fill_value(image)

    def _apply_mosaic(self, image: np.ndarray, bbox: Tuple[int, int, int, int]) -> None:
        """
        Replace each block of the region with its average color.

        The block grid starts at the region's top-left corner; blocks on the
        right and bottom edges are clipped to the region and averaged over
        their actual size.
        """
        x1, y1, x2, y2 = bbox
        block_size = self.config.mosaic_block_size

        for block_y in range(y1, y2, block_size):
            for block_x in range(x1, x2, block_size):
                block = image[block_y:min(block_y + block_size, y2),
                              block_x:min(block_x + block_size, x2)]
                block[...] = block_average(block)


def block_average(block: np.ndarray) -> np.ndarray:
    """Per-channel mean of a block; integer buffers use floor division."""
    pixels = block.reshape(-1, block.shape[2]) if block.ndim == 3 else block.reshape(-1)
    if np.issubdtype(block.dtype, np.integer):
        return (pixels.sum(axis=0, dtype=np.int64) // pixels.shape[0]).astype(block.dtype)
    return pixels.mean(axis=0).astype(block.dtype)


def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """Load an image file as a BGR numpy array."""
    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    # Load with PIL for better format support
    with Image.open(image_path) as pil_image:
        if pil_image.mode != 'RGB':
            pil_image = pil_image.convert('RGB')
        return cv2.cvtColor(np.array(pil_image), cv2.COLOR_RGB2BGR)


def save_image(image_array: np.ndarray, output_path: Union[str, Path]) -> None:
    """Save a BGR (or grayscale) array to file; format follows the suffix."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if image_array.ndim == 3 and image_array.shape[2] == 4:
        pil_image = Image.fromarray(cv2.cvtColor(image_array, cv2.COLOR_BGRA2RGBA))
    elif image_array.ndim == 3 and image_array.shape[2] == 3:
        pil_image = Image.fromarray(cv2.cvtColor(image_array, cv2.COLOR_BGR2RGB))
    else:
        pil_image = Image.fromarray(image_array.reshape(image_array.shape[:2]))

    pil_image.save(output_path)


def get_redaction_statistics(regions: Sequence[MergedRegion]) -> Dict[str, Any]:
    """
    Calculate statistics about merged regions.

    Args:
        regions: Merged regions

    Returns:
        Dictionary with redaction statistics
    """
    kind_counts: Dict[str, int] = {}
    source_counts: Dict[str, int] = {}
    category_counts: Dict[str, int] = {}
    total_area = 0

    for region in regions:
        kind = region.mask_kind.value
        kind_counts[kind] = kind_counts.get(kind, 0) + 1
        total_area += region.area

        for source in region.sources:
            source_counts[source.source.value] = source_counts.get(source.source.value, 0) + 1
            if source.category is not None:
                category = source.category.value
                category_counts[category] = category_counts.get(category, 0) + 1

    return {
        "total_regions": len(regions),
        "mask_kind_counts": kind_counts,
        "source_counts": source_counts,
        "category_counts": category_counts,
        "total_area_pixels": total_area
    }
