import numpy as np
import pytest
from numba import cuda

from tiledmm import buffers as buffers_module
from tiledmm import device
from tiledmm.dataset import write_matrix
from tiledmm.errors import (
    DeviceAllocationError,
    DeviceUnavailableError,
    DimensionMismatchError,
    LaunchConfigError,
    LaunchError,
    SynchronizationError,
)
from tiledmm.host import compare, multiply, multiply_files
from tiledmm.kernels import TiledKernel
from tiledmm.matrix import Matrix
from tiledmm.timer import PHASES, Timer


class RecordingBuffers(buffers_module.DeviceBuffers):
    """DeviceBuffers that remembers every instance created."""
    instances = []

    def __init__(self):
        super().__init__()
        RecordingBuffers.instances.append(self)


@pytest.fixture
def recorded_buffers(monkeypatch):
    RecordingBuffers.instances = []
    monkeypatch.setattr("tiledmm.host.DeviceBuffers", RecordingBuffers)
    return RecordingBuffers.instances


class FailingLaunch(TiledKernel):
    def launch(self, config, a, b, c, dims):
        raise RuntimeError("too many resources requested for launch")


def test_multiply_returns_fresh_matrix(small_operands):
    a, b = small_operands
    c = multiply(a, b)
    assert isinstance(c, Matrix)
    assert c.shape == (2, 2)
    assert c.data is not a.data


def test_dimension_mismatch_rejected_before_device_work(monkeypatch):
    def no_allocations(*args, **kwargs):
        raise AssertionError("device touched")

    monkeypatch.setattr(cuda, "device_array", no_allocations)
    a = Matrix.from_array(np.ones((2, 3)))
    b = Matrix.from_array(np.ones((2, 3)))
    with pytest.raises(DimensionMismatchError, match="columns\\(A\\)=3 != rows\\(B\\)=2"):
        multiply(a, b)


def test_invalid_tile_width(small_operands):
    a, b = small_operands
    with pytest.raises(LaunchConfigError):
        multiply(a, b, tile_width=64)


def test_missing_device(monkeypatch, small_operands):
    monkeypatch.setattr(cuda, "is_available", lambda: False)
    monkeypatch.setattr(cuda, "cuda_error", lambda: "no CUDA driver found")
    a, b = small_operands
    with pytest.raises(DeviceUnavailableError, match="no CUDA driver found"):
        multiply(a, b)


def test_phases_emitted_in_order(tmp_path, small_operands):
    a, b = small_operands
    write_matrix(tmp_path / "a.raw", a)
    write_matrix(tmp_path / "b.raw", b)

    timer = Timer()
    c = multiply_files(tmp_path / "a.raw", tmp_path / "b.raw", timer=timer)

    np.testing.assert_array_equal(c.to_array(), [[58, 64], [139, 154]])
    assert timer.messages == list(PHASES)
    assert not any(span.failed for span in timer.spans)


def test_launch_failure_releases_everything(recorded_buffers, small_operands, caplog):
    a, b = small_operands
    timer = Timer()
    with pytest.raises(LaunchError, match="too many resources"):
        multiply(a, b, kernel=FailingLaunch(), timer=timer)

    (scope,) = recorded_buffers
    assert len(scope) == 3
    assert scope.live == []
    assert "Failed to run stmt tiled kernel launch" in caplog.text
    assert timer.spans[-1].failed
    assert timer.messages[-1] == "Performing CUDA computation"


def test_synchronize_failure(monkeypatch, recorded_buffers, small_operands):
    def fault():
        raise RuntimeError("an illegal memory access was encountered")

    monkeypatch.setattr(cuda, "synchronize", fault)
    a, b = small_operands
    with pytest.raises(SynchronizationError, match="illegal memory access"):
        multiply(a, b)
    assert recorded_buffers[0].live == []


def test_partial_allocation_released(monkeypatch, recorded_buffers, small_operands):
    calls = []
    real = device.free_device_memory

    def free_until_third():
        calls.append(1)
        return real() if len(calls) < 3 else 0

    monkeypatch.setattr(device, "free_device_memory", free_until_third)
    a, b = small_operands
    with pytest.raises(DeviceAllocationError, match="deviceC"):
        multiply(a, b)

    (scope,) = recorded_buffers
    assert len(scope) == 2
    assert scope.live == []


def test_compare_reports_agreement(rng):
    a = Matrix.from_array(rng.uniform(-1, 1, size=(6, 7)))
    b = Matrix.from_array(rng.uniform(-1, 1, size=(7, 5)))
    result = compare(a, b, tile_width=4)
    assert result.agrees(rtol=1e-3, atol=1e-5)
    assert result.max_abs_diff < 1e-4
    assert result.naive_seconds >= 0 and result.tiled_seconds >= 0
    assert result.tiled.shape == result.naive.shape == (6, 5)
