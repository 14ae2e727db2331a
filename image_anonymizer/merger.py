"""
Region merger: consolidates sensitive regions into non-overlapping rectangles.

Solid (text, literal) and mosaic (face) regions are merged independently
because they are rendered differently. Within a kind, the pair of overlapping
or touching rectangles with the smallest combined bounding box is merged
first, ties going to the pair that appears earliest, until no pair is left.
"""

from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .config import MaskKind, MergeConfig, MergedRegion, Region, RegionSource
from .logger import LoggerMixin


BBox = Tuple[int, int, int, int]  # (x1, y1, x2, y2), half-open


def mask_kind_for(region: Region) -> MaskKind:
    """Rendering mode a region requires."""
    if region.source is RegionSource.FACE:
        return MaskKind.MOSAIC
    if region.source in (RegionSource.OCR_TEXT, RegionSource.USER_LITERAL):
        return MaskKind.SOLID
    raise ValueError(f"Unhandled region source: {region.source}")


def union_bbox(bbox1: BBox, bbox2: BBox) -> BBox:
    """Smallest box containing both boxes."""
    return (
        min(bbox1[0], bbox2[0]),
        min(bbox1[1], bbox2[1]),
        max(bbox1[2], bbox2[2]),
        max(bbox1[3], bbox2[3])
    )


def bbox_area(bbox: BBox) -> int:
    return (bbox[2] - bbox[0]) * (bbox[3] - bbox[1])


def overlaps_or_touches(bbox1: BBox, bbox2: BBox, tolerance: int = 1) -> bool:
    """
    True when the boxes intersect, share an edge or corner, or are separated
    by no more than ``tolerance`` pixels on both axes.
    """
    gap_x = max(bbox1[0], bbox2[0]) - min(bbox1[2], bbox2[2])
    gap_y = max(bbox1[1], bbox2[1]) - min(bbox1[3], bbox2[3])
    return gap_x <= tolerance and gap_y <= tolerance


class _Cluster:
    """Working rectangle plus the regions it covers."""

    __slots__ = ("bbox", "sources")

    def __init__(self, bbox: BBox, sources: Tuple[Region, ...]):
        self.bbox = bbox
        self.sources = sources


class RegionMerger(LoggerMixin):
    """Builds the final MergedRegion set for one image."""

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or MergeConfig()

    def merge(self, regions: Iterable[Union[Region, MergedRegion]]) -> List[MergedRegion]:
        """
        Merge sensitive regions into non-overlapping rectangles.

        Accepts classified regions or a previous merge result, so merging is
        idempotent. Regions not marked sensitive are ignored.

        Args:
            regions: Classified regions and/or merged regions

        Returns:
            Merged regions ordered by (y, x)
        """
        partitions = {MaskKind.SOLID: [], MaskKind.MOSAIC: []}

        for item in regions:
            if isinstance(item, MergedRegion):
                partitions[item.mask_kind].append(_Cluster(item.bbox, tuple(item.sources)))
            elif item.sensitive is True:
                partitions[mask_kind_for(item)].append(_Cluster(item.bbox, (item,)))

        merged = []
        for kind, clusters in partitions.items():
            input_count = len(clusters)
            for cluster in self._merge_partition(clusters):
                x1, y1, x2, y2 = cluster.bbox
                merged.append(MergedRegion(
                    x=x1, y=y1, width=x2 - x1, height=y2 - y1,
                    mask_kind=kind,
                    sources=cluster.sources
                ))
            if input_count:
                self.log_debug(f"{kind.value}: {input_count} regions in")

        merged.sort(key=lambda m: (m.y, m.x, m.mask_kind.value, m.height, m.width))
        self.log_info(f"Merged into {len(merged)} regions")
        return merged

    def _merge_partition(self, clusters: List[_Cluster]) -> List[_Cluster]:
        clusters = list(clusters)
        while True:
            pair = self._best_pair(clusters)
            if pair is None:
                return clusters
            i, j = pair
            first, second = clusters[i], clusters[j]
            # Containment yields the container's box unchanged
            clusters[i] = _Cluster(union_bbox(first.bbox, second.bbox), first.sources + second.sources)
            del clusters[j]

    def _best_pair(self, clusters: Sequence[_Cluster]) -> Optional[Tuple[int, int]]:
        """Mergeable pair with the smallest union area; earliest pair wins ties."""
        best = None
        best_area = None
        tolerance = self.config.touch_tolerance

        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                if not overlaps_or_touches(clusters[i].bbox, clusters[j].bbox, tolerance):
                    continue
                area = bbox_area(union_bbox(clusters[i].bbox, clusters[j].bbox))
                if best_area is None or area < best_area:
                    best = (i, j)
                    best_area = area

        return best
