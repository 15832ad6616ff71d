from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

pytest.importorskip("cv2")

from crossview.core.image_io import load_rgba_u8, save_rgba_u8


def _write_gray(path: Path, arr: np.ndarray) -> None:
    img = Image.fromarray(arr.astype(np.uint8), mode="L")
    if path.suffix.lower() == ".webp":
        img.save(path, lossless=True)
    else:
        img.save(path)


def test_load_rgba_u8_png_and_webp(tmp_path: Path) -> None:
    arr = (np.arange(64, dtype=np.uint8).reshape(8, 8) * 4) % 255

    p_png = tmp_path / "a.png"
    p_webp = tmp_path / "a.webp"
    _write_gray(p_png, arr)
    _write_gray(p_webp, arr)

    a = load_rgba_u8(p_png)
    b = load_rgba_u8(p_webp)

    assert a.shape == (8, 8, 4)
    assert b.shape == (8, 8, 4)
    assert a.dtype == np.uint8
    assert b.dtype == np.uint8
    np.testing.assert_array_equal(a[:, :, 0], arr)
    assert np.all(a[:, :, 3] == 255)


def test_save_then_load_keeps_channel_order(tmp_path: Path) -> None:
    rgba = np.zeros((4, 5, 4), dtype=np.uint8)
    rgba[..., 0] = 200
    rgba[..., 2] = 10
    rgba[..., 3] = 255
    p = save_rgba_u8(tmp_path / "sub" / "c.png", rgba)
    np.testing.assert_array_equal(load_rgba_u8(p), rgba)


def test_load_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_rgba_u8(tmp_path / "nope.png")
