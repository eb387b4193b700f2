"""Tests for punch-hole detection and removal."""

import cv2
import numpy as np
import pytest

from scanrestore.services.config import EdgeOffsets, PunchHoleParameters, PunchShape, PunchSpec
from scanrestore.services.punch_holes import build_search_mask, expand_specs, remove_punch_holes
from scanrestore.utils.exceptions import OperationCancelledError


def _make_page_with_hole(diameter, center=(40, 200)):
    """300x400 white page with one black disc in the left band."""
    page = np.full((400, 300, 3), 255, dtype=np.uint8)
    cv2.circle(page, center, diameter // 2, (0, 0, 0), -1)
    return page


def _run(page, **kw):
    params = PunchHoleParameters(**kw)
    return remove_punch_holes(
        page,
        params.specs(),
        roundness=params.roundness,
        fill_ratio=params.fill_ratio,
        offsets=params.offsets(),
    )


class TestSearchMask:
    def test_edge_bands(self):
        mask = build_search_mask((400, 300), EdgeOffsets(top=50, bottom=50, left=50, right=50))
        assert mask[200, 10] == 255
        assert mask[200, 290] == 255
        assert mask[10, 150] == 255
        assert mask[200, 150] == 0

    def test_zero_offsets(self):
        mask = build_search_mask((100, 100), EdgeOffsets(top=0, bottom=0, left=0, right=0))
        assert not mask.any()


class TestSpecs:
    def test_both_expands(self):
        shapes = [s.shape for s in PunchHoleParameters(shape=PunchShape.BOTH).specs()]
        assert shapes == [PunchShape.CIRCLE, PunchShape.RECT]

    def test_direct_both_spec_expanded(self):
        specs = expand_specs([PunchSpec(shape=PunchShape.BOTH, diameter=30, width=12)])
        assert [s.shape for s in specs] == [PunchShape.CIRCLE, PunchShape.RECT]
        assert all(s.diameter == 30 and s.width == 12 for s in specs)

    def test_plain_specs_unchanged(self):
        specs = [PunchSpec(shape=PunchShape.RECT)]
        assert expand_specs(specs) == specs


class TestRemovePunchHoles:
    def test_hole_inpainted(self):
        page = _make_page_with_hole(20)
        out = _run(page)
        assert out.shape == page.shape
        assert out[200, 40].mean() > 200

    def test_smaller_hole_kept(self):
        page = _make_page_with_hole(10)
        out = _run(page)
        assert out[200, 40].mean() < 50

    def test_hole_below_nominal_size_kept(self):
        # 16 px is 20% under the nominal 20 px
        page = _make_page_with_hole(16)
        out = _run(page)
        assert out[200, 40].mean() < 50

    def test_larger_hole_within_tolerance_inpainted(self):
        # 22 px is 10% over the nominal 20 px
        page = _make_page_with_hole(22)
        out = _run(page, size_tolerance=0.4)
        assert out[200, 40].mean() > 200
        yy, xx = np.mgrid[: page.shape[0], : page.shape[1]]
        dist = np.hypot(xx - 40, yy - 200)
        rim = (dist >= 11) & (dist <= 16)
        assert cv2.cvtColor(out, cv2.COLOR_BGR2GRAY)[rim].min() > 150

    def test_both_spec_finds_circle(self):
        page = _make_page_with_hole(20)
        out = remove_punch_holes(page, [PunchSpec(shape=PunchShape.BOTH, diameter=20)])
        assert out[200, 40].mean() > 200

    def test_hole_outside_bands_kept(self):
        page = _make_page_with_hole(20, center=(150, 200))
        out = _run(page)
        assert out[200, 150].mean() < 50

    def test_no_specs(self):
        page = _make_page_with_hole(20)
        np.testing.assert_array_equal(remove_punch_holes(page, []), page)

    def test_gray_input_returns_bgr(self):
        page = _make_page_with_hole(20)[:, :, 0]
        assert _run(page).ndim == 3

    def test_cancelled(self, cancelled_token):
        page = _make_page_with_hole(20)
        with pytest.raises(OperationCancelledError):
            remove_punch_holes(page, PunchHoleParameters().specs(), token=cancelled_token)
