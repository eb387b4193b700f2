"""Pytest configuration for scanrestore tests.

Shared fixtures build small synthetic pages with numpy and cv2 so every
test runs without sample files on disk.
"""

import cv2
import numpy as np
import pytest

from scanrestore.utils.cancellation import CancellationToken


def make_text_page(width=600, height=800, lines=12, seed=7):
    """White page with rows of black pseudo-text drawn by cv2.putText."""
    rng = np.random.default_rng(seed)
    page = np.full((height, width, 3), 255, dtype=np.uint8)
    margin = width // 10
    step = (height - 2 * margin) // max(1, lines)
    for i in range(lines):
        y = margin + (i + 1) * step
        text = "".join(rng.choice(list("abcdefghijklmnopqrstuvwxyz   ")) for _ in range(30))
        cv2.putText(page, text, (margin, y), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 0), 2)
    return page


@pytest.fixture
def text_page():
    """600x800 BGR page of black text on white."""
    return make_text_page()


@pytest.fixture
def cancelled_token():
    """A token that is already cancelled."""
    token = CancellationToken()
    token.cancel()
    return token


def make_bar_page(width=1000, height=700, x0=40, x1=960):
    """White page with solid text-line bars spanning ``x0..x1``."""
    page = np.full((height, width, 3), 255, dtype=np.uint8)
    for y in range(40, height - 40, 30):
        page[y : y + 8, x0:x1] = 0
    return page


def make_spread(width=1000, height=700, gutter=80):
    """Two bar pages side by side with a blank gutter in the middle."""
    page = make_bar_page(width, height, 40, width - 40)
    mid = width // 2
    page[:, mid - gutter // 2 : mid + gutter // 2] = 255
    return page


@pytest.fixture
def spread():
    """1000x700 two-page spread, gutter centred at x=500."""
    return make_spread()


@pytest.fixture
def bar_page():
    """1000x700 single page whose bars cross the middle."""
    return make_bar_page()
