"""
Flat caller buffers <-> structured arrays.

Point buffers are interleaved (x, y) float32 pairs, matrices are row-major,
images are interleaved RGBA uint8. The caller owns every buffer; nothing here
keeps a reference past the call that received it.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import numpy as np

from crossview.result import InvalidInputError


def _as_flat(buf: Any, dtype: np.dtype | type, name: str) -> np.ndarray:
    if buf is None:
        raise InvalidInputError(f"{name}: buffer is None")
    arr = np.asarray(buf)
    if arr.dtype != np.dtype(dtype):
        arr = arr.astype(dtype)
    return arr.reshape(-1)


def _require_size(arr: np.ndarray, expected: int, name: str) -> None:
    if arr.size != expected:
        raise InvalidInputError(f"{name}: expected {expected} values, got {arr.size}")


def read_points(buf: Any, length: int, name: str = "points") -> np.ndarray:
    """Interleaved float32 (x, y) buffer -> (length, 2) float32 copy."""
    if int(length) < 0:
        raise InvalidInputError(f"{name}: negative length {length}")
    flat = _as_flat(buf, np.float32, name)
    _require_size(flat, 2 * int(length), name)
    return flat.reshape(int(length), 2).copy()


def read_matrix(buf: Any, rows: int, cols: int, name: str = "matrix") -> np.ndarray:
    flat = _as_flat(buf, np.float32, name)
    _require_size(flat, int(rows) * int(cols), name)
    return flat.reshape(int(rows), int(cols)).astype(np.float64)


def read_vector(buf: Any, length: int, name: str = "vector") -> np.ndarray:
    flat = _as_flat(buf, np.float32, name)
    _require_size(flat, int(length), name)
    return flat.astype(np.float64)


def read_rgba_image(buf: Any, width: int, height: int, name: str = "image") -> np.ndarray:
    if int(width) <= 0 or int(height) <= 0:
        raise InvalidInputError(f"{name}: dimensions must be > 0, got {width}x{height}")
    flat = _as_flat(buf, np.uint8, name)
    _require_size(flat, int(width) * int(height) * 4, name)
    return flat.reshape(int(height), int(width), 4).copy()


def flatten(values: Any, dtype: np.dtype | type = np.float32) -> np.ndarray:
    return np.ascontiguousarray(np.asarray(values, dtype=dtype).reshape(-1))


class StagedWrites:
    """
    Collects destination writes and applies them all at once.

    Sizes are checked when staging so a contract violation surfaces before any
    destination is touched.
    """

    def __init__(self) -> None:
        self._pending: list[tuple[np.ndarray, np.ndarray]] = []

    def stage(self, dest: Any, values: Any, name: str = "dest") -> None:
        if not isinstance(dest, np.ndarray):
            raise InvalidInputError(f"{name}: destination must be a numpy array, got {type(dest).__name__}")
        if not dest.flags.writeable:
            raise InvalidInputError(f"{name}: destination is read-only")
        src = flatten(values, dtype=dest.dtype)
        _require_size(src, dest.size, name)
        self._pending.append((dest, src))

    def commit(self) -> None:
        for dest, src in self._pending:
            dest[...] = src.reshape(dest.shape)
        self._pending.clear()

    def discard(self) -> None:
        self._pending.clear()


@contextmanager
def staged_writes() -> Iterator[StagedWrites]:
    """
    Scoped output: destinations are written only if the block exits normally.
    """
    staged = StagedWrites()
    try:
        yield staged
    except BaseException:
        staged.discard()
        raise
    staged.commit()
