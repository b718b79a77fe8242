import os

# Must be set before numba is first imported
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

from pathlib import Path

import numpy as np
import pytest

from tiledmm import config
from tiledmm.matrix import Matrix


@pytest.fixture
def tmp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the settings store at an isolated temporary file."""
    config_file = tmp_path / "config" / "config.json"
    monkeypatch.setattr(config, "CONFIG_FILE", config_file)
    return config_file


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def small_operands():
    a = Matrix.from_array([[1, 2, 3], [4, 5, 6]])
    b = Matrix.from_array([[7, 8], [9, 10], [11, 12]])
    return a, b
