"""Checked calls into the CUDA runtime."""

import logging
from contextlib import contextmanager
from typing import Type

from numba import cuda

from .errors import DeviceUnavailableError, MatmulError, SynchronizationError


logger = logging.getLogger(__name__)


@contextmanager
def check(stmt: str, error_cls: Type[MatmulError]):
    """Run a device statement; log and re-raise any failure as ``error_cls``.

    Errors that are already MatmulErrors pass through untouched.
    """
    try:
        yield
    except MatmulError:
        raise
    except Exception as e:
        logger.error("Failed to run stmt %s", stmt)
        logger.error("Got CUDA error ...  %s", e)
        raise error_cls(f"{stmt} failed: {e}") from e


def require_device():
    """Fail fast when there is no device to run on."""
    if not cuda.is_available():
        reason = cuda.cuda_error()
        raise DeviceUnavailableError(
            f"No CUDA device available{f': {reason}' if reason else ''}"
        )


def free_device_memory() -> float:
    """Free bytes on the current device (infinite under the simulator)."""
    free, _total = cuda.current_context().get_memory_info()
    return free


def flush_deallocations():
    """Release device memory queued by dropped arrays right away."""
    deallocations = getattr(cuda.current_context(), "deallocations", None)
    if deallocations is not None:
        deallocations.clear()


def synchronize():
    """Block until every launched kernel has finished."""
    with check("cudaDeviceSynchronize()", SynchronizationError):
        cuda.synchronize()
