from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from crossview.api.camera import CalibrationResult, LensModel
from crossview.api.cross_view import RemapTable, identity_map
from crossview.api.homography import HomographyFit
from crossview.api.model_io import (
    CALIBRATION_SCHEMA,
    load_calibration,
    load_homography,
    load_remap,
    save_calibration,
    save_homography,
    save_remap,
)
from conftest import make_camera


def _result() -> CalibrationResult:
    cam = make_camera(812.5, 808.0, 321.0, 239.5, dist=[-0.1, 0.02, 0.001, 0.0, 0.0], size=(640, 480))
    rvecs = np.array([[0.1, -0.2, 0.05], [0.0, 0.3, -0.1]])
    tvecs = np.array([[-4.0, -3.0, 20.0], [-5.0, -2.5, 22.0]])
    return CalibrationResult(camera=cam, rvecs=rvecs, tvecs=tvecs, rms=0.21, per_view_rms=np.array([0.2, 0.22]))


def test_calibration_save_load(tmp_path: Path) -> None:
    res = _result()
    p = save_calibration(tmp_path / "cam" / "calibration.json", res)
    meta = json.loads(p.read_text(encoding="utf-8"))
    assert meta["schema_version"] == CALIBRATION_SCHEMA
    assert meta["image"] == {"width_px": 640, "height_px": 480}
    assert len(meta["dist"]) == 8

    back = load_calibration(p)
    assert back.camera.model is LensModel.PINHOLE
    assert back.camera.image_size == (640, 480)
    np.testing.assert_allclose(back.camera.K, res.camera.K)
    np.testing.assert_allclose(back.camera.dist, res.camera.dist)
    np.testing.assert_allclose(back.tvecs, res.tvecs)
    np.testing.assert_allclose(back.per_view_rms, [0.2, 0.22])
    assert back.rms == pytest.approx(0.21)


def test_calibration_rejects_unknown_schema(tmp_path: Path) -> None:
    p = save_calibration(tmp_path / "calibration.json", _result())
    meta = json.loads(p.read_text(encoding="utf-8"))
    meta["schema_version"] = "crossview.calibration.v9"
    p.write_text(json.dumps(meta), encoding="utf-8")
    with pytest.raises(ValueError):
        load_calibration(p)


def test_homography_save_load(tmp_path: Path) -> None:
    H = np.array([[1.0, 0.02, 5.0], [0.01, 0.98, -3.0], [0.0, 1e-5, 1.0]])
    fit = HomographyFit(homography=H, inlier_mask=np.array([True, False, True]), rmse=0.05, inlier_count=2)
    p = save_homography(tmp_path / "homography.json", fit, source="camera_a", target="camera_b")
    meta = json.loads(p.read_text(encoding="utf-8"))
    assert meta["views"] == {"source": "camera_a", "target": "camera_b"}

    back = load_homography(p)
    np.testing.assert_allclose(back.homography, H)
    np.testing.assert_array_equal(back.inlier_mask, [True, False, True])
    assert back.inlier_count == 2


def test_remap_save_load(tmp_path: Path) -> None:
    table = identity_map(7, 5)
    p = save_remap(tmp_path / "m.npz", table)
    back = load_remap(p, expected_size=(7, 5))
    assert isinstance(back, RemapTable)
    np.testing.assert_array_equal(back.map_x, table.map_x)
    np.testing.assert_array_equal(back.map_y, table.map_y)
    with pytest.raises(ValueError):
        load_remap(p, expected_size=(5, 7))


def test_remap_missing_arrays(tmp_path: Path) -> None:
    p = tmp_path / "bad.npz"
    np.savez_compressed(p, map_x=np.zeros((2, 2), dtype=np.float32))
    with pytest.raises(ValueError):
        load_remap(p)
