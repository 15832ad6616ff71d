from __future__ import annotations

import numpy as np

from crossview.config import CalibrationConfig

DARK = 30
LIGHT = 225
PAPER = 255


def square_counts(config: CalibrationConfig) -> tuple[int, int]:
    """Printed squares (x, y): one more than the interior corners along each axis."""
    return config.grid_cols + 1, config.grid_rows + 1


def board_extent(config: CalibrationConfig, margin_squares: float = 1.0) -> tuple[float, float, float, float]:
    """(x0, y0, x1, y1) of the printed sheet in board units, margin included."""
    sq = float(config.square_size)
    sx, sy = square_counts(config)
    m = float(margin_squares) * sq
    return -sq - m, -sq - m, (sx - 1) * sq + m, (sy - 1) * sq + m


def sample_board(
    config: CalibrationConfig,
    xp: np.ndarray,
    yp: np.ndarray,
    margin_squares: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Analytic chessboard intensity at plane coordinates (board units).

    Interior corner (i, j) sits at (i*square, j*square). Returns (intensity uint8, on_sheet mask).
    """
    sq = float(config.square_size)
    sx, sy = square_counts(config)
    x0, y0, x1, y1 = board_extent(config, margin_squares)
    finite = np.isfinite(xp) & np.isfinite(yp)
    xs = np.where(finite, xp, 0.0)
    ys = np.where(finite, yp, 0.0)
    on_sheet = finite & (xs >= x0) & (xs <= x1) & (ys >= y0) & (ys <= y1)

    gx = np.floor(xs / sq).astype(np.int64) + 1
    gy = np.floor(ys / sq).astype(np.int64) + 1
    on_grid = on_sheet & (gx >= 0) & (gx < sx) & (gy >= 0) & (gy < sy)

    tex = np.full(xp.shape, PAPER, dtype=np.uint8)
    dark = ((gx + gy) & 1) == 0
    tex[on_grid & dark] = DARK
    tex[on_grid & ~dark] = LIGHT
    return tex, on_sheet


def board_texture(
    config: CalibrationConfig | None = None,
    pixels_per_square: int = 80,
    margin_squares: float = 1.0,
) -> np.ndarray:
    """
    Printable grayscale uint8 chessboard with a white margin.

    Pixel centers sit at integer coordinates; interior corner (i, j) lands on
    `board_corner_pixels(...)[j*cols + i]`.
    """
    config = config or CalibrationConfig()
    pps = int(pixels_per_square)
    if pps <= 0:
        raise ValueError("pixels_per_square must be > 0")
    sq = float(config.square_size)
    x0, y0, x1, y1 = board_extent(config, margin_squares)
    w = int(round((x1 - x0) / sq * pps))
    h = int(round((y1 - y0) / sq * pps))
    scale = sq / pps
    uu, vv = np.meshgrid(np.arange(w, dtype=np.float64), np.arange(h, dtype=np.float64))
    tex, _ = sample_board(config, x0 + (uu + 0.5) * scale, y0 + (vv + 0.5) * scale, margin_squares)
    return tex


def board_corner_pixels(
    config: CalibrationConfig | None = None,
    pixels_per_square: int = 80,
    margin_squares: float = 1.0,
) -> np.ndarray:
    """(cols*rows, 2) float32 corner positions in `board_texture` pixel coordinates."""
    config = config or CalibrationConfig()
    sq = float(config.square_size)
    x0, y0, _, _ = board_extent(config, margin_squares)
    obj = config.object_points().astype(np.float64)
    scale = float(pixels_per_square) / sq
    u = (obj[:, 0] - x0) * scale - 0.5
    v = (obj[:, 1] - y0) * scale - 0.5
    return np.stack([u, v], axis=1).astype(np.float32)
