from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import numpy as np

from crossview.core.enhance import EnhanceOp, parse_ops

SCHEMA_VERSION = "crossview.config.v0"


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Explicit configuration threaded through every detector, solver and estimator call.

    Grid geometry counts *interior* corners (a 10x7 grid is printed on an 11x8 board).
    `square_size` is in arbitrary board units; it only scales translations.
    """

    grid_cols: int = 10
    grid_rows: int = 7
    square_size: float = 1.0

    adaptive_threshold: bool = True
    normalize_image: bool = True
    fast_check: bool = True
    subpixel_refine: bool = True
    subpixel_window: int = 5
    subpixel_iterations: int = 30
    subpixel_epsilon: float = 1e-3
    enhance_ops: tuple[EnhanceOp, ...] = ()

    pinhole_flags: tuple[str, ...] = ()
    pinhole_max_iterations: int = 30
    pinhole_epsilon: float = float(np.finfo(np.float64).eps)

    fisheye_flags: tuple[str, ...] = ("CALIB_RECOMPUTE_EXTRINSIC", "CALIB_FIX_SKEW")
    fisheye_max_iterations: int = 20
    fisheye_epsilon: float = 1e-6

    undistort_alpha: float = 0.0
    fisheye_balance: float = 0.0

    ransac_threshold: float = 3.0
    ransac_max_iterations: int = 2000
    ransac_confidence: float = 0.995
    lmeds_max_iterations: int = 2000
    refine_homography: bool = True
    zero_denominator_eps: float = 1e-6
    rmse_sentinel: float = 1e9
    seed: int | None = None

    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        validate_config(self)

    @property
    def grid_size(self) -> tuple[int, int]:
        """(cols, rows) as OpenCV expects `patternSize`."""
        return (self.grid_cols, self.grid_rows)

    @property
    def corner_count(self) -> int:
        return self.grid_cols * self.grid_rows

    def object_points(self) -> np.ndarray:
        """
        Planar board corners (z=0) in raster order, matching the detector output order.

        Recomputed on every call; identical across all views of one calibration run.
        """
        idx = np.arange(self.corner_count)
        obj = np.zeros((self.corner_count, 3), dtype=np.float32)
        obj[:, 0] = self.square_size * (idx % self.grid_cols)
        obj[:, 1] = self.square_size * (idx // self.grid_cols)
        return obj

    def with_overrides(self, **kwargs: Any) -> "CalibrationConfig":
        return replace(self, **kwargs)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def validate_config(cfg: CalibrationConfig) -> None:
    _require(int(cfg.grid_cols) >= 2 and int(cfg.grid_rows) >= 2, "grid_cols and grid_rows must be >= 2")
    _require(float(cfg.square_size) > 0.0, "square_size must be > 0")
    _require(int(cfg.subpixel_window) >= 1, "subpixel_window must be >= 1")
    _require(int(cfg.subpixel_iterations) >= 1, "subpixel_iterations must be >= 1")
    _require(float(cfg.subpixel_epsilon) > 0.0, "subpixel_epsilon must be > 0")
    _require(int(cfg.pinhole_max_iterations) >= 1, "pinhole_max_iterations must be >= 1")
    _require(float(cfg.pinhole_epsilon) > 0.0, "pinhole_epsilon must be > 0")
    _require(int(cfg.fisheye_max_iterations) >= 1, "fisheye_max_iterations must be >= 1")
    _require(float(cfg.fisheye_epsilon) > 0.0, "fisheye_epsilon must be > 0")
    _require(0.0 <= float(cfg.undistort_alpha) <= 1.0, "undistort_alpha must be in [0, 1]")
    _require(0.0 <= float(cfg.fisheye_balance) <= 1.0, "fisheye_balance must be in [0, 1]")
    _require(float(cfg.ransac_threshold) > 0.0, "ransac_threshold must be > 0")
    _require(int(cfg.ransac_max_iterations) >= 1, "ransac_max_iterations must be >= 1")
    _require(0.0 < float(cfg.ransac_confidence) < 1.0, "ransac_confidence must be in (0, 1)")
    _require(int(cfg.lmeds_max_iterations) >= 1, "lmeds_max_iterations must be >= 1")
    _require(float(cfg.zero_denominator_eps) > 0.0, "zero_denominator_eps must be > 0")
    _require(cfg.seed is None or int(cfg.seed) >= 0, "seed must be a non-negative integer or null")
    for name in cfg.pinhole_flags + cfg.fisheye_flags:
        _require(isinstance(name, str) and name.startswith("CALIB_"), f"unknown calibration flag: {name!r}")


def parse_config(data: dict[str, Any]) -> CalibrationConfig:
    schema_version = data.get("schema_version", SCHEMA_VERSION)
    _require(schema_version == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    known = {f.name: f for f in fields(CalibrationConfig) if f.name != "extra"}
    kwargs: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in data.items():
        if key == "schema_version":
            continue
        if key not in known:
            extra[key] = value
            continue
        if key in ("pinhole_flags", "fisheye_flags"):
            _require(isinstance(value, (list, tuple)), f"{key} must be a list of flag names")
            value = tuple(str(v) for v in value)
        elif key == "enhance_ops":
            _require(isinstance(value, (list, tuple)), "enhance_ops must be a list")
            value = parse_ops(value)
        elif key == "seed":
            value = None if value is None else int(value)
        kwargs[key] = value
    return CalibrationConfig(**kwargs, extra=extra)


def load_config(path: Path) -> CalibrationConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    _require(isinstance(data, dict), "config file must contain a JSON object")
    return parse_config(data)


def config_to_dict(cfg: CalibrationConfig) -> dict[str, Any]:
    out: dict[str, Any] = {"schema_version": SCHEMA_VERSION}
    for f in fields(CalibrationConfig):
        if f.name == "extra":
            continue
        value = getattr(cfg, f.name)
        if f.name == "enhance_ops":
            value = [op.to_dict() for op in value]
        elif isinstance(value, tuple):
            value = list(value)
        out[f.name] = value
    return out
