from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class RationalDistortion:
    """
    Radial-tangential distortion on normalized camera coordinates (x=X/Z, y=Y/Z).

    Coefficient order follows OpenCV's 8-element vector:
      (k1, k2, p1, p2, k3, k4, k5, k6)
    k4..k6 form the denominator of the rational radial term; all zero gives the
    classic Brown-Conrady model.
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0
    k4: float = 0.0
    k5: float = 0.0
    k6: float = 0.0

    @classmethod
    def from_coeffs(cls, coeffs: Sequence[float] | np.ndarray) -> "RationalDistortion":
        c = np.asarray(coeffs, dtype=np.float64).reshape(-1)
        if c.size not in (4, 5, 8):
            raise ValueError(f"expected 4, 5 or 8 distortion coefficients, got {c.size}")
        padded = np.zeros(8, dtype=np.float64)
        padded[: c.size] = c
        return cls(*(float(v) for v in padded))

    def coeffs(self) -> np.ndarray:
        return np.array([self.k1, self.k2, self.p1, self.p2, self.k3, self.k4, self.k5, self.k6], dtype=np.float64)

    def distort(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r2 = x * x + y * y
        r4 = r2 * r2
        r6 = r4 * r2
        radial = (1.0 + self.k1 * r2 + self.k2 * r4 + self.k3 * r6) / (1.0 + self.k4 * r2 + self.k5 * r4 + self.k6 * r6)
        xy = x * y
        x_tan = 2.0 * self.p1 * xy + self.p2 * (r2 + 2.0 * x * x)
        y_tan = self.p1 * (r2 + 2.0 * y * y) + 2.0 * self.p2 * xy
        return x * radial + x_tan, y * radial + y_tan

    def undistort(self, xd: np.ndarray, yd: np.ndarray, iterations: int = 20) -> tuple[np.ndarray, np.ndarray]:
        """
        Iterative inverse of distort() for small/moderate distortion.
        """
        xd = np.asarray(xd, dtype=np.float64)
        yd = np.asarray(yd, dtype=np.float64)
        x = xd.copy()
        y = yd.copy()
        for _ in range(int(iterations)):
            x_est, y_est = self.distort(x, y)
            x += xd - x_est
            y += yd - y_est
        return x, y


@dataclass(frozen=True)
class FisheyeDistortion:
    """
    Equidistant fisheye model (OpenCV `cv::fisheye`):

      theta = atan(r),  theta_d = theta * (1 + k1 theta^2 + k2 theta^4 + k3 theta^6 + k4 theta^8)
      (xd, yd) = (theta_d / r) * (x, y)
    """

    k1: float = 0.0
    k2: float = 0.0
    k3: float = 0.0
    k4: float = 0.0

    @classmethod
    def from_coeffs(cls, coeffs: Sequence[float] | np.ndarray) -> "FisheyeDistortion":
        c = np.asarray(coeffs, dtype=np.float64).reshape(-1)
        if c.size != 4:
            raise ValueError(f"fisheye model needs exactly 4 coefficients, got {c.size}")
        return cls(*(float(v) for v in c))

    def coeffs(self) -> np.ndarray:
        return np.array([self.k1, self.k2, self.k3, self.k4], dtype=np.float64)

    def _theta_d(self, theta: np.ndarray) -> np.ndarray:
        t2 = theta * theta
        return theta * (1.0 + t2 * (self.k1 + t2 * (self.k2 + t2 * (self.k3 + t2 * self.k4))))

    def distort(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r = np.hypot(x, y)
        theta = np.arctan(r)
        scale = np.where(r > 1e-12, self._theta_d(theta) / np.where(r > 1e-12, r, 1.0), 1.0)
        return x * scale, y * scale

    def undistort(self, xd: np.ndarray, yd: np.ndarray, iterations: int = 20) -> tuple[np.ndarray, np.ndarray]:
        """Newton inversion of theta_d(theta), then back to the pinhole plane."""
        xd = np.asarray(xd, dtype=np.float64)
        yd = np.asarray(yd, dtype=np.float64)
        theta_d = np.hypot(xd, yd)
        theta = theta_d.copy()
        for _ in range(int(iterations)):
            t2 = theta * theta
            f = self._theta_d(theta) - theta_d
            df = 1.0 + t2 * (3.0 * self.k1 + t2 * (5.0 * self.k2 + t2 * (7.0 * self.k3 + 9.0 * self.k4 * t2)))
            theta = theta - f / np.where(np.abs(df) > 1e-12, df, 1e-12)
        safe = theta_d > 1e-12
        scale = np.where(safe, np.tan(theta) / np.where(safe, theta_d, 1.0), 1.0)
        return xd * scale, yd * scale


def distortion_model(model: str, coeffs: Sequence[float] | np.ndarray) -> RationalDistortion | FisheyeDistortion:
    if str(model) == "fisheye":
        return FisheyeDistortion.from_coeffs(coeffs)
    if str(model) == "pinhole":
        return RationalDistortion.from_coeffs(coeffs)
    raise ValueError(f"unknown lens model: {model}")
