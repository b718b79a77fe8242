"""Device buffer lifecycle: allocate, stage copies, release on every exit path."""

import logging
from typing import Dict, List

import numpy as np
from numba import cuda

from . import device
from .errors import DeviceAllocationError, DeviceReleaseError, MatmulError, TransferError
from .matrix import DTYPE


logger = logging.getLogger(__name__)


class DeviceBuffer:
    """A flat float32 array resident on the device."""

    def __init__(self, label: str, array):
        self.label = label
        self._array = array
        self.size = array.size
        self.nbytes = array.nbytes

    @property
    def released(self) -> bool:
        return self._array is None

    @property
    def array(self):
        """The underlying device array, for passing to a kernel."""
        if self._array is None:
            raise TransferError(f"{self.label} has already been released")
        return self._array

    def copy_from_host(self, host):
        host = np.ascontiguousarray(host, dtype=DTYPE).reshape(-1)
        if host.size != self.size:
            raise TransferError(
                f"Cannot copy {host.size} values into {self.label} of size {self.size}"
            )
        with device.check(f"cudaMemcpy({self.label}, host, {self.nbytes}, cudaMemcpyHostToDevice)",
                          TransferError):
            self.array.copy_to_device(host)

    def copy_to_host(self) -> np.ndarray:
        with device.check(f"cudaMemcpy(host, {self.label}, {self.nbytes}, cudaMemcpyDeviceToHost)",
                          TransferError):
            return self.array.copy_to_host()

    def release(self):
        """Drop the device allocation. Safe to call more than once."""
        if self._array is not None:
            logger.debug("Releasing %s (%d bytes)", self.label, self.nbytes)
            self._array = None

    def __repr__(self):
        state = "released" if self.released else f"{self.nbytes} bytes"
        return f"DeviceBuffer({self.label!r}, {state})"


class DeviceBuffers:
    """Scope owning every buffer allocated through it.

    Example:
        with DeviceBuffers() as buffers:
            device_a = buffers.upload("deviceA", host_a)
            device_c = buffers.allocate("deviceC", size)
            ...
        # all buffers released here, even if the body raised
    """

    def __init__(self):
        self._buffers: Dict[str, DeviceBuffer] = {}
        self._order: List[str] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.release_all()
        except MatmulError:
            if exc_type is None:
                raise
            # keep the error that ended the scope
            logger.warning("Release failed while unwinding %s", exc_type.__name__)
        return False

    def __getitem__(self, label: str) -> DeviceBuffer:
        return self._buffers[label]

    def __len__(self):
        return len(self._order)

    @property
    def live(self) -> List[DeviceBuffer]:
        return [self._buffers[label] for label in self._order if not self._buffers[label].released]

    def allocate(self, label: str, size: int) -> DeviceBuffer:
        """Allocate ``size`` float32 values on the device."""
        if label in self._buffers:
            raise ValueError(f"Buffer {label!r} already allocated in this scope")

        nbytes = size * np.dtype(DTYPE).itemsize
        stmt = f"cudaMalloc(&{label}, {nbytes})"
        with device.check(stmt, DeviceAllocationError):
            free = device.free_device_memory()
            if nbytes > free:
                logger.error("Failed to run stmt %s", stmt)
                raise DeviceAllocationError(
                    f"{stmt} failed: requested {nbytes} bytes, {int(free)} available"
                )
            array = cuda.device_array(size, dtype=DTYPE)

        buffer = DeviceBuffer(label, array)
        self._buffers[label] = buffer
        self._order.append(label)
        logger.debug("Allocated %s (%d bytes)", label, nbytes)
        return buffer

    def upload(self, label: str, host) -> DeviceBuffer:
        """Allocate a buffer sized to ``host`` and copy it in."""
        host = np.ascontiguousarray(host, dtype=DTYPE).reshape(-1)
        buffer = self.allocate(label, host.size)
        buffer.copy_from_host(host)
        return buffer

    def release_all(self):
        """Release in reverse allocation order, then flush the driver queue."""
        for label in reversed(self._order):
            self._buffers[label].release()
        with device.check("cudaFree(...)", DeviceReleaseError):
            device.flush_deallocations()
