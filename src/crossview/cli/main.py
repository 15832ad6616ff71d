from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import numpy as np

from crossview.api.camera import CameraIntrinsics, LensModel
from crossview.api.chessboard import detect_chessboard_corners
from crossview.api.model_io import load_calibration
from crossview.api.pipeline import Capture, run_pair_calibration, write_pair_report
from crossview.api.undistort import build_undistortion_map, remap_image
from crossview.config import CalibrationConfig, load_config
from crossview.core.image_io import load_rgba_u8, save_rgba_u8
from crossview.sim.board import board_corner_pixels, board_texture
from crossview.sim.views import generate_pair_dataset

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp", ".webp", ".tif", ".tiff")


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _load_config(path: Path | None, seed: int | None) -> CalibrationConfig:
    cfg = load_config(path) if path is not None else CalibrationConfig()
    if seed is not None:
        cfg = cfg.with_overrides(seed=int(seed))
    return cfg


def _captures(directory: Path, camera: str) -> list[Capture]:
    files = sorted(p for p in Path(directory).iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
    return [Capture(key=p.stem, camera=camera, path=p) for p in files]


def _parse_floats(text: str) -> list[float]:
    return [float(s) for s in text.split(",") if s.strip()]


def _camera_from_args(args: argparse.Namespace) -> CameraIntrinsics:
    fy = args.fx if args.fy is None else args.fy
    cx = (args.width - 1) * 0.5 if args.cx is None else args.cx
    cy = (args.height - 1) * 0.5 if args.cy is None else args.cy
    model = LensModel(args.model)
    dist = _parse_floats(args.dist) if args.dist else [0.0] * (4 if model is LensModel.FISHEYE else 8)
    K = np.array([[args.fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)
    return CameraIntrinsics(K=K, dist=np.asarray(dist, dtype=np.float64), model=model, image_size=(args.width, args.height))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="crossview")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--config", type=Path, default=None, help="Calibration config JSON (crossview.config.v0).")
    parser.add_argument("--seed", type=int, default=None, help="Seed for robust homography fitting.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    det = sub.add_parser("detect", help="Detect chessboard corners in one or more images.")
    det.add_argument("images", type=Path, nargs="+")
    det.add_argument("--out-json", type=Path, default=None, help="Write detected corners as JSON.")

    pair = sub.add_parser("calibrate-pair", help="Calibrate two cameras and map camera A onto camera B.")
    pair.add_argument("--a", type=Path, required=True, help="Directory of camera A captures.")
    pair.add_argument("--b", type=Path, required=True, help="Directory of camera B captures (matched by file stem).")
    pair.add_argument("--out", type=Path, required=True)
    pair.add_argument("--model-a", type=str, default="pinhole", choices=["pinhole", "fisheye"])
    pair.add_argument("--model-b", type=str, default="pinhole", choices=["pinhole", "fisheye"])

    und = sub.add_parser("undistort-image", help="Undistort an image with a saved calibration.")
    und.add_argument("--calibration", type=Path, required=True, help="calibration.json")
    und.add_argument("--image", type=Path, required=True)
    und.add_argument("--out", type=Path, required=True)

    gen = sub.add_parser("generate-views", help="Render synthetic chessboard captures for a camera pair.")
    gen.add_argument("--out", type=Path, required=True)
    gen.add_argument("--views", type=int, default=8)
    gen.add_argument("--width", type=int, default=640)
    gen.add_argument("--height", type=int, default=480)
    gen.add_argument("--fx", type=float, default=800.0)
    gen.add_argument("--fy", type=float, default=None)
    gen.add_argument("--cx", type=float, default=None)
    gen.add_argument("--cy", type=float, default=None)
    gen.add_argument("--model", type=str, default="pinhole", choices=["pinhole", "fisheye"])
    gen.add_argument("--dist", type=str, default="", help="Comma-separated distortion coefficients (8 or 4).")

    board = sub.add_parser("print-board", help="Write a printable chessboard matching the configured grid.")
    board.add_argument("--out", type=Path, required=True)
    board.add_argument("--pixels-per-square", type=int, default=80)
    board.add_argument("--margin", type=float, default=1.0, help="White margin, in squares.")

    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    config = _load_config(args.config, args.seed)

    if args.cmd == "detect":
        results: dict[str, list[list[float]] | None] = {}
        for path in args.images:
            res = detect_chessboard_corners(load_rgba_u8(path), config)
            results[str(path)] = res.value.tolist() if res.ok else None
            print(f"{path}: {'found' if res.ok else 'not found'}")
        if args.out_json is not None:
            args.out_json.parent.mkdir(parents=True, exist_ok=True)
            payload = {"grid": {"cols": config.grid_cols, "rows": config.grid_rows}, "corners": results}
            args.out_json.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            print(f"Wrote {args.out_json}")
        return 0 if any(v is not None for v in results.values()) else 1

    if args.cmd == "calibrate-pair":
        res = run_pair_calibration(
            _captures(args.a, "a"),
            _captures(args.b, "b"),
            model_a=args.model_a,
            model_b=args.model_b,
            config=config,
            seed=config.seed,
        )
        if not res.ok:
            print(f"Calibration failed: {res.message}")
            return 1
        for path in write_pair_report(args.out, res.value):
            print(f"Wrote {path}")
        return 0

    if args.cmd == "undistort-image":
        calib = load_calibration(args.calibration)
        img = load_rgba_u8(args.image)
        h, w = img.shape[:2]
        umap = build_undistortion_map(calib.camera, (w, h), config)
        save_rgba_u8(args.out, remap_image(img, umap.map_x, umap.map_y))
        print(f"Wrote {args.out}")
        return 0

    if args.cmd == "generate-views":
        camera = _camera_from_args(args)
        pairs = generate_pair_dataset(camera, camera, args.views, config, seed=config.seed)
        truth: dict[str, object] = {
            "camera": {"K": camera.K.tolist(), "dist": camera.dist.tolist(), "model": camera.model.value},
            "views": [],
        }
        for p in pairs:
            for name, view in (("a", p.view_a), ("b", p.view_b)):
                save_rgba_u8(args.out / name / f"{p.key}.png", view.image)
            truth["views"].append(  # type: ignore[union-attr]
                {"key": p.key, "corners_a": p.view_a.corners.tolist(), "corners_b": p.view_b.corners.tolist()}
            )
        truth_path = args.out / "truth.json"
        truth_path.write_text(json.dumps(truth, indent=2), encoding="utf-8")
        print(f"Wrote {len(pairs)} view pairs under {args.out}")
        print(f"Wrote {truth_path}")
        return 0

    if args.cmd == "print-board":
        tex = board_texture(config, args.pixels_per_square, args.margin)
        save_rgba_u8(args.out, tex)
        corners_path = args.out.with_suffix(".corners.json")
        corners = board_corner_pixels(config, args.pixels_per_square, args.margin)
        corners_path.write_text(json.dumps({"corners_px": corners.tolist()}, indent=2), encoding="utf-8")
        print(f"Wrote {args.out}")
        print(f"Wrote {corners_path}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
