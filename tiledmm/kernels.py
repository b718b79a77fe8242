"""
Matrix multiplication kernels
Naive per-element kernel and a tiled kernel using shared memory
"""

from functools import lru_cache
from typing import Dict, Tuple

from numba import cuda, float32

from .errors import DimensionMismatchError, UnknownKernelError
from .launch import LaunchConfig, validate_tile_width


@cuda.jit
def matmul_naive(A, B, C,
                 num_a_rows, num_a_columns,
                 num_b_rows, num_b_columns,
                 num_c_rows, num_c_columns):
    """
    Matrix multiplication: C = A @ B, one output element per thread

    Args:
        A, B, C: Flat row-major device buffers
        num_*_rows, num_*_columns: Matrix dimensions
    """
    col = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    row = cuda.blockIdx.y * cuda.blockDim.y + cuda.threadIdx.y

    if row < num_c_rows and col < num_c_columns:
        sum_val = float32(0.0)
        for i in range(num_a_columns):
            sum_val += A[row * num_a_columns + i] * B[i * num_b_columns + col]
        C[row * num_c_columns + col] = sum_val


def make_tiled_kernel(tile_width):
    """Build the tiled kernel for one tile width.

    Shared array shapes must be compile-time constants, so each tile width
    gets its own kernel with the width frozen in the closure.
    """

    @cuda.jit
    def matmul_tiled(A, B, C,
                     num_a_rows, num_a_columns,
                     num_b_rows, num_b_columns,
                     num_c_rows, num_c_columns):
        # Thread indices
        tx = cuda.threadIdx.x
        ty = cuda.threadIdx.y

        # Output coordinate owned by this thread
        col = cuda.blockIdx.x * tile_width + tx
        row = cuda.blockIdx.y * tile_width + ty

        # Shared memory for tiles (one allocation per line)
        tile_a = cuda.shared.array((tile_width, tile_width), float32)
        tile_b = cuda.shared.array((tile_width, tile_width), float32)

        sum_val = float32(0.0)

        # Every thread runs every phase, even when (row, col) is outside C,
        # so that no thread skips a barrier the rest of the block reaches.
        num_phases = (num_a_columns + tile_width - 1) // tile_width
        for t in range(num_phases):
            a_col = t * tile_width + tx
            if row < num_a_rows and a_col < num_a_columns:
                tile_a[ty, tx] = A[row * num_a_columns + a_col]
            else:
                tile_a[ty, tx] = float32(0.0)

            b_row = t * tile_width + ty
            if b_row < num_b_rows and col < num_b_columns:
                tile_b[ty, tx] = B[b_row * num_b_columns + col]
            else:
                tile_b[ty, tx] = float32(0.0)

            # Tiles fully populated before anyone reads them
            cuda.syncthreads()

            for i in range(tile_width):
                sum_val += tile_a[ty, i] * tile_b[i, tx]

            # Everyone done reading before the next phase overwrites
            cuda.syncthreads()

        if row < num_c_rows and col < num_c_columns:
            C[row * num_c_columns + col] = sum_val

    return matmul_tiled


@lru_cache(maxsize=None)
def tiled_kernel(tile_width):
    validate_tile_width(tile_width)
    return make_tiled_kernel(tile_width)


Dims = Tuple[int, int, int, int, int, int]


class MultiplyKernel:
    """One strategy for computing C = A @ B on the device.

    Subclasses provide ``compile``; launching is shared so every strategy
    takes the same buffers, dimensions and launch configuration.
    """
    name = None

    def compile(self, tile_width: int):
        raise NotImplementedError

    def launch(self, config: LaunchConfig, a, b, c, dims: Dims):
        """Enqueue the kernel; completion is observed with cuda.synchronize()."""
        num_a_rows, num_a_columns, num_b_rows, num_b_columns, num_c_rows, num_c_columns = dims
        if num_a_columns != num_b_rows:
            raise DimensionMismatchError(
                f"columns(A)={num_a_columns} does not match rows(B)={num_b_rows}"
            )
        # B tiles are bounds-checked against B's own width; C must agree with it
        if num_b_columns != num_c_columns or num_a_rows != num_c_rows:
            raise DimensionMismatchError(
                f"C is {num_c_rows} x {num_c_columns} but A @ B is "
                f"{num_a_rows} x {num_b_columns}"
            )
        kernel = self.compile(config.tile_width)
        kernel[config.grid, config.block](a, b, c, *dims)

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class NaiveKernel(MultiplyKernel):
    name = "naive"

    def compile(self, tile_width: int):
        return matmul_naive


class TiledKernel(MultiplyKernel):
    name = "tiled"

    def compile(self, tile_width: int):
        return tiled_kernel(tile_width)


KERNELS: Dict[str, MultiplyKernel] = {
    NaiveKernel.name: NaiveKernel(),
    TiledKernel.name: TiledKernel(),
}


def get_kernel(kernel) -> MultiplyKernel:
    """Resolve a kernel name (or pass through a kernel instance)."""
    if isinstance(kernel, MultiplyKernel):
        return kernel
    try:
        return KERNELS[kernel]
    except KeyError:
        raise UnknownKernelError(
            f"Unknown kernel {kernel!r}; choose one of {', '.join(sorted(KERNELS))}"
        ) from None
