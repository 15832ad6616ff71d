from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def load_rgba_u8(path: str | Path) -> np.ndarray:
    """
    Load an image as (H,W,4) RGBA uint8.

    Primary backend is OpenCV. Pillow is used when OpenCV cannot decode the file
    (some builds lack webp/jpeg2000 support).
    """
    import cv2  # type: ignore

    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(str(p))
    img = cv2.imread(str(p), cv2.IMREAD_UNCHANGED)
    if img is not None:
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)
        if img.ndim == 2:
            return cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
        if img.shape[2] == 3:
            return cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
        return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)

    with Image.open(p) as im:
        im = im.convert("RGBA")
        arr = np.asarray(im, dtype=np.uint8)
    return arr


def save_rgba_u8(path: str | Path, image: np.ndarray) -> Path:
    """Write an RGBA, RGB or grayscale uint8 array; the format follows the suffix."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    arr = np.asarray(image)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.ndim == 3 and arr.shape[2] == 4 and p.suffix.lower() in (".jpg", ".jpeg"):
        arr = arr[:, :, :3]
    Image.fromarray(arr).save(p)
    return p
