"""Host-side matrix value: a flat row-major float32 buffer plus its dimensions."""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import DimensionMismatchError


DTYPE = np.float32


@dataclass(frozen=True, eq=False)
class Matrix:
    """Row-major matrix of 32-bit floats.

    Args:
        data: 1-D float32 buffer of length ``rows * columns``
        rows: Number of rows
        columns: Number of columns
    """
    data: np.ndarray
    rows: int
    columns: int

    def __post_init__(self):
        if self.rows < 1 or self.columns < 1:
            raise ValueError(f"Matrix dimensions must be positive, got {self.rows} x {self.columns}")

        data = np.ascontiguousarray(self.data, dtype=DTYPE).reshape(-1)
        if data.size != self.rows * self.columns:
            raise ValueError(
                f"Buffer holds {data.size} values but {self.rows} x {self.columns} "
                f"needs {self.rows * self.columns}"
            )
        object.__setattr__(self, "data", data)

    @classmethod
    def from_array(cls, values) -> "Matrix":
        """Build a matrix from any 2-D array-like."""
        array = np.asarray(values, dtype=DTYPE)
        if array.ndim != 2:
            raise ValueError(f"Expected a 2-D array, got {array.ndim} dimension(s)")
        rows, columns = array.shape
        return cls(array.reshape(-1), rows, columns)

    @classmethod
    def zeros(cls, rows: int, columns: int) -> "Matrix":
        return cls(np.zeros(rows * columns, dtype=DTYPE), rows, columns)

    @classmethod
    def identity(cls, n: int) -> "Matrix":
        return cls.from_array(np.eye(n, dtype=DTYPE))

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.columns)

    @property
    def nbytes(self) -> int:
        return self.data.nbytes

    def to_array(self) -> np.ndarray:
        """Return a 2-D view of the buffer."""
        return self.data.reshape(self.rows, self.columns)


def check_compatible(a: Matrix, b: Matrix):
    """Reject operands whose contraction dimensions disagree."""
    if a.columns != b.rows:
        raise DimensionMismatchError(
            f"Cannot multiply {a.rows} x {a.columns} by {b.rows} x {b.columns}: "
            f"columns(A)={a.columns} != rows(B)={b.rows}"
        )


def output_shape(a: Matrix, b: Matrix) -> Tuple[int, int]:
    check_compatible(a, b)
    return (a.rows, b.columns)


def format_matrix(m: Matrix) -> str:
    """Render one line per row, space separated."""
    return "\n".join(
        " ".join(f"{value:g}" for value in row) for row in m.to_array()
    )
