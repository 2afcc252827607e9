from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure `import neighbor_cf...` works when pytest uses importlib import mode.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from neighbor_cf.store.sparse import SparseMatrix  # noqa: E402


@pytest.fixture
def small_ratings() -> SparseMatrix:
    """Four users over five items; user 4 shares no pattern with the others."""
    return SparseMatrix(
        [
            (1, 10, 80.0), (1, 11, 60.0), (1, 12, 40.0), (1, 13, 90.0),
            (2, 10, 85.0), (2, 11, 65.0), (2, 12, 35.0), (2, 14, 70.0),
            (3, 10, 20.0), (3, 11, 40.0), (3, 12, 70.0), (3, 13, 10.0), (3, 14, 50.0),
            (4, 11, 50.0), (4, 13, 50.0),
        ]
    )
