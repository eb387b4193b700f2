"""Connected-component labeling and predicate-based selection.

Shared engine of border removal, despeckle and punch-hole cleanup: a
binary mask is labeled (8-connected by default), each component becomes
an immutable ComponentRecord, a caller predicate decides which ones to
select, and the selected labels are painted into a new selection mask.
The label image only lives inside a ComponentSet for the duration of one
classification.
"""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import cv2
import numpy as np

from scanrestore.constants import WHITE
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.exceptions import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComponentRecord:
    """Geometry of one connected component (label 0 is background)."""

    label: int
    x: int
    y: int
    width: int
    height: int
    area: int
    touches_left: bool
    touches_top: bool
    touches_right: bool
    touches_bottom: bool

    @property
    def bbox_area(self) -> int:
        return self.width * self.height

    @property
    def solidity(self) -> float:
        """Pixel area over bounding-box area."""
        return self.area / self.bbox_area if self.bbox_area > 0 else 0.0

    @property
    def touches_edge(self) -> bool:
        return self.touches_left or self.touches_top or self.touches_right or self.touches_bottom

    @property
    def touches_opposite_edges(self) -> bool:
        return (self.touches_left and self.touches_right) or (
            self.touches_top and self.touches_bottom
        )

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)


class ComponentSet:
    """Records of one labeling pass plus the transient label image."""

    def __init__(self, records: list[ComponentRecord], labels: np.ndarray) -> None:
        self.records = records
        self.labels = labels

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ComponentRecord]:
        return iter(self.records)

    def __getitem__(self, index: int) -> ComponentRecord:
        return self.records[index]

    @property
    def shape(self) -> tuple[int, int]:
        return self.labels.shape[:2]

    def component_mask(self, record: ComponentRecord) -> np.ndarray:
        """Boolean mask of one component, cropped to its bounding box."""
        roi = self.labels[record.y : record.y + record.height, record.x : record.x + record.width]
        return roi == record.label

    def selection_mask(self, selected: list[int]) -> np.ndarray:
        """0/255 mask of the given labels over the full image."""
        if not selected:
            return np.zeros(self.shape, dtype=np.uint8)
        hit = np.isin(self.labels, np.asarray(selected, dtype=self.labels.dtype))
        return np.where(hit, WHITE, 0).astype(np.uint8)


def label_components(mask: np.ndarray, connectivity: int = 8) -> ComponentSet:
    """Label the non-zero pixels of a single-channel mask.

    Args:
        mask: Single-channel uint8 mask (non-zero = foreground)
        connectivity: 4 or 8

    Returns:
        ComponentSet with records in label order 1..N

    Raises:
        InvalidInputError: For a non 2-D mask or unsupported connectivity
    """
    if mask is None or mask.ndim != 2:
        raise InvalidInputError("mask", None if mask is None else mask.shape, "expected a 2-D mask")
    if connectivity not in (4, 8):
        raise InvalidInputError("connectivity", connectivity, "must be 4 or 8")

    h, w = mask.shape
    binary = (mask > 0).astype(np.uint8)
    count, labels, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=connectivity)

    records = []
    for label in range(1, count):
        x, y, bw, bh, area = (int(v) for v in stats[label])
        records.append(
            ComponentRecord(
                label=label,
                x=x,
                y=y,
                width=bw,
                height=bh,
                area=area,
                touches_left=x == 0,
                touches_top=y == 0,
                touches_right=x + bw >= w,
                touches_bottom=y + bh >= h,
            )
        )
    return ComponentSet(records, labels)


def label_with_grouping(
    mask: np.ndarray,
    grouping_mask: np.ndarray,
    connectivity: int = 8,
) -> ComponentSet:
    """Label ``grouping_mask`` but measure each group on ``mask`` pixels only.

    A dilated grouping mask joins neighbouring blobs into one label while
    areas, bounding boxes and the returned label image stay restricted to
    the true pixels of ``mask``. Groups with no pixel in ``mask`` are
    dropped.
    """
    from scipy import ndimage

    grouped = label_components(grouping_mask, connectivity)
    labels = np.where(mask > 0, grouped.labels, 0).astype(np.int32)
    h, w = mask.shape[:2]
    areas = np.bincount(labels.ravel(), minlength=len(grouped) + 1)

    records = []
    for index, slices in enumerate(ndimage.find_objects(labels), start=1):
        if slices is None:
            continue
        ys, xs = slices
        records.append(
            ComponentRecord(
                label=index,
                x=xs.start,
                y=ys.start,
                width=xs.stop - xs.start,
                height=ys.stop - ys.start,
                area=int(areas[index]),
                touches_left=xs.start == 0,
                touches_top=ys.start == 0,
                touches_right=xs.stop >= w,
                touches_bottom=ys.stop >= h,
            )
        )
    return ComponentSet(records, labels)


def select(
    components: ComponentSet,
    predicate: Callable[[ComponentRecord], bool],
    token: CancellationToken | None = None,
    stage: str = "component classification",
) -> np.ndarray:
    """Selection mask of the components accepted by ``predicate``."""
    token = ensure_token(token)
    selected = []
    for record in components:
        token.raise_if_cancelled(stage)
        if predicate(record):
            selected.append(record.label)
    logger.debug(f"Selected {len(selected)} of {len(components)} components")
    return components.selection_mask(selected)


def classify(
    mask: np.ndarray,
    predicate: Callable[[ComponentRecord], bool],
    token: CancellationToken | None = None,
    connectivity: int = 8,
) -> np.ndarray:
    """Label ``mask`` and return the 0/255 mask of the selected components.

    Args:
        mask: Single-channel binary mask
        predicate: Called once per component in label order
        token: Optional cancellation token, polled per component
        connectivity: 4 or 8

    Returns:
        Selection mask with the same shape as ``mask``
    """
    return select(label_components(mask, connectivity), predicate, token)
