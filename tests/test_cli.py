from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

pytest.importorskip("cv2")

from crossview.api.camera import CalibrationResult
from crossview.api.model_io import save_calibration
from crossview.cli.main import main
from crossview.core.image_io import load_rgba_u8, save_rgba_u8
from conftest import make_camera


def test_print_board_then_detect(tmp_path: Path) -> None:
    board = tmp_path / "board.png"
    assert main(["print-board", "--out", str(board), "--pixels-per-square", "30"]) == 0
    assert board.is_file()
    corners = json.loads((tmp_path / "board.corners.json").read_text(encoding="utf-8"))["corners_px"]
    assert len(corners) == 70

    out_json = tmp_path / "det.json"
    assert main(["detect", str(board), "--out-json", str(out_json)]) == 0
    payload = json.loads(out_json.read_text(encoding="utf-8"))
    assert payload["grid"] == {"cols": 10, "rows": 7}
    assert len(payload["corners"][str(board)]) == 70


def test_detect_nothing_found(tmp_path: Path) -> None:
    blank = save_rgba_u8(tmp_path / "blank.png", np.full((48, 64), 128, dtype=np.uint8))
    assert main(["detect", str(blank)]) == 1


def test_generate_views(tmp_path: Path) -> None:
    rc = main(
        ["--seed", "3", "generate-views", "--out", str(tmp_path), "--views", "2", "--width", "320", "--height", "240", "--fx", "400"]
    )
    assert rc == 0
    truth = json.loads((tmp_path / "truth.json").read_text(encoding="utf-8"))
    assert [v["key"] for v in truth["views"]] == ["000000", "000001"]
    img = load_rgba_u8(tmp_path / "a" / "000000.png")
    assert img.shape == (240, 320, 4)
    assert (tmp_path / "b" / "000001.png").is_file()


def test_undistort_image(tmp_path: Path) -> None:
    cam = make_camera(dist=[-0.1, 0.01, 0.0, 0.0, 0.0], size=(64, 48), cx=31.5, cy=23.5, fx=60.0, fy=60.0)
    calib = save_calibration(
        tmp_path / "calibration.json",
        CalibrationResult(camera=cam, rvecs=np.zeros((0, 3)), tvecs=np.zeros((0, 3)), rms=0.0),
    )
    src = save_rgba_u8(tmp_path / "in.png", np.full((48, 64), 200, dtype=np.uint8))
    out = tmp_path / "out.png"
    assert main(["undistort-image", "--calibration", str(calib), "--image", str(src), "--out", str(out)]) == 0
    assert load_rgba_u8(out).shape == (48, 64, 4)
