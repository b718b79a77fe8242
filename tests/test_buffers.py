import numpy as np
import pytest
from numba import cuda

from tiledmm import device
from tiledmm.buffers import DeviceBuffer, DeviceBuffers
from tiledmm.errors import DeviceAllocationError, DeviceReleaseError, TransferError


def test_upload_and_copy_back():
    host = np.arange(12, dtype=np.float32)
    with DeviceBuffers() as buffers:
        buf = buffers.upload("deviceA", host)
        assert buf.size == 12
        assert buf.nbytes == 48
        np.testing.assert_array_equal(buf.copy_to_host(), host)


def test_buffers_released_on_exit():
    with DeviceBuffers() as buffers:
        a = buffers.allocate("deviceA", 4)
        b = buffers.allocate("deviceB", 4)
        assert len(buffers.live) == 2
    assert a.released and b.released
    assert buffers.live == []


def test_buffers_released_when_body_raises():
    with pytest.raises(RuntimeError):
        with DeviceBuffers() as buffers:
            a = buffers.allocate("deviceA", 4)
            raise RuntimeError("launch failed")
    assert a.released


def test_release_is_idempotent():
    with DeviceBuffers() as buffers:
        buf = buffers.allocate("deviceA", 4)
        buf.release()
        buf.release()
        buffers.release_all()
    assert buf.released


def test_released_buffer_cannot_be_used():
    with DeviceBuffers() as buffers:
        buf = buffers.allocate("deviceA", 4)
    with pytest.raises(TransferError, match="already been released"):
        buf.copy_to_host()


def test_duplicate_label_rejected():
    with DeviceBuffers() as buffers:
        buffers.allocate("deviceA", 4)
        with pytest.raises(ValueError):
            buffers.allocate("deviceA", 4)


def test_size_mismatch_on_copy():
    with DeviceBuffers() as buffers:
        buf = buffers.allocate("deviceA", 4)
        with pytest.raises(TransferError):
            buf.copy_from_host(np.zeros(5, dtype=np.float32))


def test_request_larger_than_free_memory(monkeypatch):
    monkeypatch.setattr(device, "free_device_memory", lambda: 16)
    with DeviceBuffers() as buffers:
        buffers.allocate("deviceA", 4)
        with pytest.raises(DeviceAllocationError, match="requested 20 bytes"):
            buffers.allocate("deviceB", 5)
        assert [b.label for b in buffers.live] == ["deviceA"]


def test_driver_failure_maps_to_allocation_error(monkeypatch, caplog):
    def out_of_memory(*args, **kwargs):
        raise RuntimeError("CUDA_ERROR_OUT_OF_MEMORY")

    with DeviceBuffers() as buffers:
        first = buffers.allocate("deviceA", 4)
        monkeypatch.setattr(cuda, "device_array", out_of_memory)
        with pytest.raises(DeviceAllocationError) as excinfo:
            buffers.allocate("deviceB", 4)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert first.released
    assert "Failed to run stmt cudaMalloc(&deviceB, 16)" in caplog.text
    assert "CUDA_ERROR_OUT_OF_MEMORY" in caplog.text


def test_driver_failure_on_copy_maps_to_transfer_error():
    class BrokenArray:
        size = 4
        nbytes = 16

        def copy_to_host(self):
            raise RuntimeError("invalid device pointer")

    buf = DeviceBuffer("deviceC", BrokenArray())
    with pytest.raises(TransferError, match="invalid device pointer"):
        buf.copy_to_host()


def _failing_flush():
    raise RuntimeError("CUDA_ERROR_ILLEGAL_ADDRESS")


def test_release_failure_raises_release_error(monkeypatch, caplog):
    monkeypatch.setattr(device, "flush_deallocations", _failing_flush)
    with pytest.raises(DeviceReleaseError) as excinfo:
        with DeviceBuffers() as buffers:
            buf = buffers.allocate("deviceA", 4)
    assert buf.released
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert "Failed to run stmt cudaFree(...)" in caplog.text


def test_release_failure_does_not_mask_body_error(monkeypatch):
    monkeypatch.setattr(device, "flush_deallocations", _failing_flush)
    with pytest.raises(TransferError, match="copy failed"):
        with DeviceBuffers() as buffers:
            buf = buffers.allocate("deviceA", 4)
            raise TransferError("copy failed")
    assert buf.released
