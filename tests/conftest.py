"""Pytest configuration.

Allows running tests directly from the repo without requiring an editable install.
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))


@pytest.fixture
def linear_problem():
    """A well-conditioned 2x2 contraction ``f(x) = A x + b`` and its fixed point."""

    matrix = np.array([[0.2, 0.1], [0.0, 0.3]])
    offset = np.array([0.1, 0.2])
    expected = np.linalg.solve(np.eye(2) - matrix, offset)

    def func(x, out):
        np.dot(matrix, x, out=out)
        out += offset

    return func, expected
