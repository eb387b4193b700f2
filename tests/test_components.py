"""Tests for connected-component labeling and selection."""

import numpy as np
import pytest

from scanrestore.services.components import (
    ComponentRecord,
    classify,
    label_components,
    label_with_grouping,
    select,
)
from scanrestore.utils.exceptions import InvalidInputError, OperationCancelledError


def _make_mask():
    """20x20 mask: a bar on the left edge, a square inside and a dot."""
    mask = np.zeros((20, 20), dtype=np.uint8)
    mask[0:20, 0:2] = 255  # touches top, left and bottom
    mask[5:10, 8:13] = 255
    mask[15, 15] = 255
    return mask


class TestComponentRecord:
    def _record(self, **kw):
        base = dict(
            label=1, x=0, y=0, width=4, height=2, area=6,
            touches_left=False, touches_top=False, touches_right=False, touches_bottom=False,
        )
        base.update(kw)
        return ComponentRecord(**base)

    def test_derived_properties(self):
        rec = self._record()
        assert rec.bbox_area == 8
        assert rec.solidity == pytest.approx(0.75)
        assert rec.center == (2.0, 1.0)
        assert not rec.touches_edge

    def test_opposite_edges(self):
        assert self._record(touches_left=True, touches_right=True).touches_opposite_edges
        assert not self._record(touches_left=True, touches_top=True).touches_opposite_edges

    def test_frozen(self):
        rec = self._record()
        with pytest.raises(AttributeError):
            rec.area = 3


class TestLabelComponents:
    def test_records(self):
        comps = label_components(_make_mask())
        assert len(comps) == 3
        by_area = sorted(comps, key=lambda r: r.area)
        dot, square, bar = by_area
        assert dot.area == 1
        assert (square.x, square.y, square.width, square.height) == (8, 5, 5, 5)
        assert bar.touches_left and bar.touches_top and bar.touches_bottom
        assert not bar.touches_right
        assert bar.touches_opposite_edges

    def test_connectivity(self):
        mask = np.zeros((4, 4), dtype=np.uint8)
        mask[0, 0] = mask[1, 1] = 255
        assert len(label_components(mask, 8)) == 1
        assert len(label_components(mask, 4)) == 2

    def test_invalid_inputs(self):
        with pytest.raises(InvalidInputError):
            label_components(np.zeros((4, 4, 3), dtype=np.uint8))
        with pytest.raises(InvalidInputError):
            label_components(np.zeros((4, 4), dtype=np.uint8), connectivity=6)

    def test_component_mask(self):
        comps = label_components(_make_mask())
        square = max(comps, key=lambda r: r.area if not r.touches_edge else 0)
        roi = comps.component_mask(square)
        assert roi.shape == (5, 5)
        assert roi.all()


class TestLabelWithGrouping:
    def test_groups_measured_on_true_pixels(self):
        mask = np.zeros((10, 20), dtype=np.uint8)
        mask[4:6, 2:4] = 255
        mask[4:6, 6:8] = 255
        grouping = mask.copy()
        grouping[4:6, 4:6] = 255  # bridge joins both blobs

        comps = label_with_grouping(mask, grouping)
        assert len(comps) == 1
        rec = comps[0]
        assert rec.area == 8
        assert (rec.x, rec.width) == (2, 6)
        # the bridge is not part of the component pixels
        assert comps.selection_mask([rec.label])[4, 4] == 0

    def test_groups_without_mask_pixels_dropped(self):
        mask = np.zeros((10, 10), dtype=np.uint8)
        mask[1, 1] = 255
        grouping = mask.copy()
        grouping[7:9, 7:9] = 255
        comps = label_with_grouping(mask, grouping)
        assert len(comps) == 1


class TestSelection:
    def test_classify_by_area(self):
        sel = classify(_make_mask(), lambda r: r.area == 25)
        assert np.count_nonzero(sel) == 25
        assert sel[7, 10] == 255
        assert sel[15, 15] == 0

    def test_empty_selection(self):
        sel = classify(_make_mask(), lambda r: False)
        assert sel.shape == (20, 20)
        assert not sel.any()

    def test_predicate_called_in_label_order(self):
        seen = []
        comps = label_components(_make_mask())
        select(comps, lambda r: seen.append(r.label) or False)
        assert seen == sorted(seen)

    def test_cancelled(self, cancelled_token):
        with pytest.raises(OperationCancelledError):
            classify(_make_mask(), lambda r: True, cancelled_token)
