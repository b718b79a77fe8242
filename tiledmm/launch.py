"""Grid and block dimensions for the matrix multiply kernels."""

from dataclasses import dataclass
from typing import Tuple

from .errors import LaunchConfigError


TILE_WIDTH = 16
MAX_TILE_WIDTH = 32  # 32 x 32 = 1024 threads, the per-block ceiling


def ceil_div(x: int, y: int) -> int:
    return (x - 1) // y + 1


@dataclass(frozen=True)
class LaunchConfig:
    """Launch geometry; x covers output columns, y covers output rows."""
    grid: Tuple[int, int]
    block: Tuple[int, int]
    tile_width: int

    @property
    def threads_launched(self) -> int:
        return self.grid[0] * self.grid[1] * self.block[0] * self.block[1]

    def idle_threads(self, rows: int, columns: int) -> int:
        """Threads whose output coordinate falls outside the matrix."""
        return self.threads_launched - rows * columns


def validate_tile_width(tile_width: int):
    if not isinstance(tile_width, int) or isinstance(tile_width, bool):
        raise LaunchConfigError(f"Tile width must be an integer, got {tile_width!r}")
    if not 1 <= tile_width <= MAX_TILE_WIDTH:
        raise LaunchConfigError(
            f"Tile width must be between 1 and {MAX_TILE_WIDTH}, got {tile_width}"
        )


def launch_config(rows: int, columns: int, tile_width: int = TILE_WIDTH) -> LaunchConfig:
    """Cover a rows x columns output with tile_width x tile_width blocks.

    Uses ceiling division so ragged edges still get a (partially idle) block.
    """
    validate_tile_width(tile_width)
    if rows < 1 or columns < 1:
        raise LaunchConfigError(f"Output dimensions must be positive, got {rows} x {columns}")

    grid = (ceil_div(columns, tile_width), ceil_div(rows, tile_width))
    block = (tile_width, tile_width)
    return LaunchConfig(grid=grid, block=block, tile_width=tile_width)
