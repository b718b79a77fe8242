"""Host orchestration: allocate, copy in, launch, synchronize, copy out, release."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np

from . import device
from .buffers import DeviceBuffers
from .dataset import read_matrix
from .errors import LaunchError
from .kernels import MultiplyKernel, get_kernel
from .launch import TILE_WIDTH, launch_config
from .matrix import Matrix, format_matrix, output_shape
from .timer import (
    ALLOCATE_DEVICE,
    COMPUTE,
    COMPUTE_KERNEL,
    COPY,
    COPY_TO_DEVICE,
    COPY_TO_HOST,
    FREE_DEVICE,
    GENERIC,
    GPU,
    IMPORT_DATA,
    Timer,
)


logger = logging.getLogger(__name__)

KernelLike = Union[str, MultiplyKernel]


def multiply(
    a: Matrix,
    b: Matrix,
    kernel: KernelLike = "tiled",
    tile_width: int = TILE_WIDTH,
    timer: Optional[Timer] = None,
) -> Matrix:
    """Compute C = A @ B on the device.

    Args:
        a: Left operand (m x k)
        b: Right operand (k x n)
        kernel: Kernel name ('naive' or 'tiled') or a MultiplyKernel instance
        tile_width: Block edge length, also the shared tile size
        timer: Optional Timer receiving one span per phase

    Returns:
        Freshly allocated m x n result

    Raises:
        DimensionMismatchError: before any device work, if k differs
        MatmulError: any allocation, transfer, launch or synchronize failure
    """
    num_c_rows, num_c_columns = output_shape(a, b)
    strategy = get_kernel(kernel)
    config = launch_config(num_c_rows, num_c_columns, tile_width)
    timer = timer if timer is not None else Timer()
    device.require_device()

    logger.debug(
        "Launching %s kernel: grid=%s block=%s (%d idle threads)",
        strategy.name, config.grid, config.block,
        config.idle_threads(num_c_rows, num_c_columns),
    )

    with DeviceBuffers() as buffers:
        with timer.span(GPU, ALLOCATE_DEVICE):
            device_a = buffers.allocate("deviceA", a.data.size)
            device_b = buffers.allocate("deviceB", b.data.size)
            device_c = buffers.allocate("deviceC", num_c_rows * num_c_columns)

        with timer.span(GPU, COPY_TO_DEVICE):
            device_a.copy_from_host(a.data)
            device_b.copy_from_host(b.data)

        with timer.span(COMPUTE, COMPUTE_KERNEL):
            with device.check(f"{strategy.name} kernel launch <<<{config.grid}, {config.block}>>>",
                              LaunchError):
                strategy.launch(
                    config,
                    device_a.array, device_b.array, device_c.array,
                    (a.rows, a.columns, b.rows, b.columns, num_c_rows, num_c_columns),
                )
            device.synchronize()

        with timer.span(COPY, COPY_TO_HOST):
            host_c = device_c.copy_to_host()

        with timer.span(GPU, FREE_DEVICE):
            buffers.release_all()

    return Matrix(host_c, num_c_rows, num_c_columns)


def multiply_files(
    a_path: Union[str, Path],
    b_path: Union[str, Path],
    kernel: KernelLike = "tiled",
    tile_width: int = TILE_WIDTH,
    timer: Optional[Timer] = None,
) -> Matrix:
    """Import both operands from disk, then multiply them."""
    timer = timer if timer is not None else Timer()

    with timer.span(GENERIC, IMPORT_DATA):
        a = read_matrix(a_path)
        b = read_matrix(b_path)

    logger.debug("The dimensions of A are %d x %d", a.rows, a.columns)
    logger.debug("The dimensions of B are %d x %d", b.rows, b.columns)
    logger.debug("The dimensions of C are %d x %d", a.rows, b.columns)

    c = multiply(a, b, kernel=kernel, tile_width=tile_width, timer=timer)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Result:\n%s", format_matrix(c))
    return c


@dataclass
class Comparison:
    naive: Matrix
    tiled: Matrix
    max_abs_diff: float
    max_rel_diff: float
    naive_seconds: float
    tiled_seconds: float

    def agrees(self, rtol: float, atol: float) -> bool:
        return bool(np.allclose(self.tiled.data, self.naive.data, rtol=rtol, atol=atol))

    @property
    def speedup(self) -> float:
        if self.tiled_seconds == 0:
            return float("inf")
        return self.naive_seconds / self.tiled_seconds


def compare(a: Matrix, b: Matrix, tile_width: int = TILE_WIDTH) -> Comparison:
    """Run both kernels on the same operands and measure how far apart they land."""
    naive_timer, tiled_timer = Timer(), Timer()
    naive = multiply(a, b, kernel="naive", tile_width=tile_width, timer=naive_timer)
    tiled = multiply(a, b, kernel="tiled", tile_width=tile_width, timer=tiled_timer)

    diff = np.abs(tiled.data.astype(np.float64) - naive.data.astype(np.float64))
    scale = np.maximum(np.abs(naive.data.astype(np.float64)), np.finfo(np.float32).tiny)
    return Comparison(
        naive=naive,
        tiled=tiled,
        max_abs_diff=float(diff.max()),
        max_rel_diff=float((diff / scale).max()),
        naive_seconds=naive_timer.by_message(COMPUTE_KERNEL).elapsed,
        tiled_seconds=tiled_timer.by_message(COMPUTE_KERNEL).elapsed,
    )
