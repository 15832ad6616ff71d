from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Union

import numpy as np

from crossview.result import InvalidInputError

CONTRAST_MID = 128.0
MAX_SLOPE = 3.0


@dataclass(frozen=True)
class Contrast:
    """Linear contrast stretch around mid-gray; slope 1 preserves the image."""

    slope: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {"type": "contrast", "slope": float(self.slope)}


@dataclass(frozen=True)
class Invert:
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"type": "invert", "enabled": bool(self.enabled)}


EnhanceOp = Union[Contrast, Invert]


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def parse_ops(items: Iterable[dict[str, Any] | EnhanceOp]) -> tuple[EnhanceOp, ...]:
    ops: list[EnhanceOp] = []
    for item in items:
        if isinstance(item, (Contrast, Invert)):
            ops.append(item)
            continue
        if not isinstance(item, dict):
            raise ValueError(f"enhance op must be an object, got {type(item).__name__}")
        kind = item.get("type")
        if kind == "contrast":
            ops.append(Contrast(slope=float(item.get("slope", 1.0))))
        elif kind == "invert":
            ops.append(Invert(enabled=bool(item.get("enabled", True))))
        else:
            raise ValueError(f"unknown enhance op type: {kind!r}")
    return normalize_ops(ops)


def normalize_ops(ops: Iterable[EnhanceOp]) -> tuple[EnhanceOp, ...]:
    """
    Canonical op list: first contrast wins, no-op contrasts and disabled inverts are dropped,
    and contrast always runs before invert.
    """
    out: list[EnhanceOp] = []
    contrast_seen = False
    for op in ops:
        if isinstance(op, Contrast):
            if contrast_seen:
                continue
            contrast_seen = True
            slope = _clamp(float(op.slope), 0.0, MAX_SLOPE)
            if abs(slope - 1.0) < 1e-6:
                continue
            out.append(Contrast(slope=slope))
        elif isinstance(op, Invert):
            if not op.enabled:
                continue
            out.append(Invert())
    ci = next((i for i, o in enumerate(out) if isinstance(o, Contrast)), -1)
    ii = next((i for i, o in enumerate(out) if isinstance(o, Invert)), -1)
    if ci >= 0 and ii >= 0 and ci > ii:
        out[ci], out[ii] = out[ii], out[ci]
    return tuple(out)


def rgba_to_gray(img: np.ndarray) -> np.ndarray:
    """RGBA/RGB/gray uint8 -> single-channel uint8 (ITU-R 601 luma, as OpenCV)."""
    import cv2  # type: ignore

    img = np.asarray(img)
    if img.ndim == 2:
        return img.astype(np.uint8, copy=False)
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise InvalidInputError(f"expected (H,W), (H,W,3) or (H,W,4) image, got {img.shape}")
    code = cv2.COLOR_RGBA2GRAY if img.shape[2] == 4 else cv2.COLOR_RGB2GRAY
    return cv2.cvtColor(np.ascontiguousarray(img, dtype=np.uint8), code)


def gray_to_rgba(gray: np.ndarray) -> np.ndarray:
    gray = np.asarray(gray, dtype=np.uint8)
    out = np.empty(gray.shape + (4,), dtype=np.uint8)
    out[..., :3] = gray[..., None]
    out[..., 3] = 255
    return out


def apply_ops_gray(gray: np.ndarray, ops: Iterable[EnhanceOp]) -> np.ndarray:
    ops = normalize_ops(ops)
    if not ops:
        return gray
    buf = np.asarray(gray, dtype=np.float64)
    for op in ops:
        if isinstance(op, Contrast):
            buf = np.rint(CONTRAST_MID + op.slope * (buf - CONTRAST_MID))
            buf = np.clip(buf, 0.0, 255.0)
        else:
            buf = 255.0 - buf
    return buf.astype(np.uint8)
