"""Matrix files: import, export, reference generation and solution checking.

Two text formats are understood, picked by file extension:

    .raw   first line "rows columns", then one whitespace-separated row per line
    .csv   comma-separated rows, no header; dimensions are inferred

A dataset directory holds ``input0.raw`` (A), ``input1.raw`` (B) and
``output.raw`` (the expected C).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

from .errors import DatasetError
from .matrix import DTYPE, Matrix


logger = logging.getLogger(__name__)

INPUT_A = "input0.raw"
INPUT_B = "input1.raw"
EXPECTED_OUTPUT = "output.raw"

PathLike = Union[str, Path]


def _parse_row(line: str, sep: Optional[str], path: Path, lineno: int) -> List[float]:
    try:
        return [float(token) for token in line.split(sep) if token.strip()]
    except ValueError as e:
        raise DatasetError(f"{path}:{lineno}: {e}") from e


def _read_raw(path: Path, lines: List[str]) -> Matrix:
    if not lines:
        raise DatasetError(f"{path}: empty file")

    header = lines[0].split()
    if len(header) != 2:
        raise DatasetError(f"{path}:1: expected 'rows columns' header, got {lines[0]!r}")
    try:
        rows, columns = int(header[0]), int(header[1])
    except ValueError as e:
        raise DatasetError(f"{path}:1: bad header: {e}") from e
    if rows < 1 or columns < 1:
        raise DatasetError(f"{path}:1: dimensions must be positive, got {rows} x {columns}")

    values: List[float] = []
    for lineno, line in enumerate(lines[1:], start=2):
        values.extend(_parse_row(line, None, path, lineno))

    if len(values) != rows * columns:
        raise DatasetError(
            f"{path}: header says {rows} x {columns} = {rows * columns} values, found {len(values)}"
        )
    return Matrix(np.array(values, dtype=DTYPE), rows, columns)


def _read_csv(path: Path, lines: List[str]) -> Matrix:
    rows = [
        _parse_row(line, ",", path, lineno)
        for lineno, line in enumerate(lines, start=1)
    ]
    if not rows:
        raise DatasetError(f"{path}: empty file")

    columns = len(rows[0])
    for lineno, row in enumerate(rows, start=1):
        if len(row) != columns:
            raise DatasetError(f"{path}:{lineno}: expected {columns} values, found {len(row)}")
    return Matrix.from_array(rows)


def read_matrix(path: PathLike) -> Matrix:
    """Import a matrix file into a fresh host buffer."""
    path = Path(path)
    try:
        text = path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise DatasetError(f"Cannot read {path}: {e}") from e

    lines = [line for line in text.splitlines() if line.strip()]
    if path.suffix.lower() == ".csv":
        matrix = _read_csv(path, lines)
    else:
        matrix = _read_raw(path, lines)

    logger.debug("Imported %s (%d x %d)", path, matrix.rows, matrix.columns)
    return matrix


def write_matrix(path: PathLike, matrix: Matrix):
    """Export a matrix in the format implied by the extension."""
    path = Path(path)
    array = matrix.to_array()
    if path.suffix.lower() == ".csv":
        body = "\n".join(",".join(f"{v:.9g}" for v in row) for row in array)
    else:
        body = f"{matrix.rows} {matrix.columns}\n" + "\n".join(
            " ".join(f"{v:.9g}" for v in row) for row in array
        )
    try:
        path.write_text(body + "\n")
    except OSError as e:
        raise DatasetError(f"Cannot write {path}: {e}") from e


def expected_path_for(a_path: PathLike) -> Optional[Path]:
    """The implicit validation target: output.raw beside input A, if present."""
    candidate = Path(a_path).parent / EXPECTED_OUTPUT
    return candidate if candidate.is_file() else None


@dataclass
class SolutionReport:
    correct: bool
    message: str
    mismatch: Optional[Tuple[int, int]] = None
    expected_value: Optional[float] = None
    actual_value: Optional[float] = None


def check_solution(
    actual: Matrix,
    expected: Matrix,
    rtol: float = 1e-3,
    atol: float = 1e-5,
) -> SolutionReport:
    """Compare a computed result against the expected matrix.

    Elements match when ``|actual - expected| <= atol + rtol * |expected|``.
    Only the first mismatch (in row-major order) is reported.
    """
    if actual.shape != expected.shape:
        return SolutionReport(
            correct=False,
            message=(
                f"The solution did not match the expected results: expected a "
                f"{expected.rows} x {expected.columns} matrix but got "
                f"{actual.rows} x {actual.columns}."
            ),
        )

    close = np.isclose(actual.data, expected.data, rtol=rtol, atol=atol)
    if close.all():
        return SolutionReport(correct=True, message="Solution is correct.")

    index = int(np.argmin(close))
    row, column = divmod(index, actual.columns)
    want, got = float(expected.data[index]), float(actual.data[index])
    return SolutionReport(
        correct=False,
        message=(
            f"The solution did not match the expected results at row {row} and "
            f"column {column}. Expecting {want:g} but got {got:g}."
        ),
        mismatch=(row, column),
        expected_value=want,
        actual_value=got,
    )


def reference_product(a: Matrix, b: Matrix) -> Matrix:
    """Host-side C = A @ B, accumulated in float64."""
    product = a.to_array().astype(np.float64) @ b.to_array().astype(np.float64)
    return Matrix.from_array(product)


def generate_dataset(
    directory: PathLike,
    rows: int,
    inner: int,
    columns: int,
    seed: Optional[int] = None,
) -> Tuple[Path, Path, Path]:
    """Write random A (rows x inner), B (inner x columns) and their product.

    Entries are drawn from [0, 1), so sums never cancel and a relative
    tolerance is meaningful for every element.
    """
    directory = Path(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DatasetError(f"Cannot create {directory}: {e}") from e

    rng = np.random.default_rng(seed)
    a = Matrix.from_array(rng.random((rows, inner)))
    b = Matrix.from_array(rng.random((inner, columns)))
    c = reference_product(a, b)

    paths = (directory / INPUT_A, directory / INPUT_B, directory / EXPECTED_OUTPUT)
    for path, matrix in zip(paths, (a, b, c)):
        write_matrix(path, matrix)
    logger.info("Wrote dataset %d x %d x %d to %s", rows, inner, columns, directory)
    return paths
