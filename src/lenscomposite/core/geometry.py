from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class PinholeIntrinsics:
    """Pinhole intrinsics in pixel units (OpenCV convention: x right, y down)."""

    fx: float
    fy: float
    cx: float
    cy: float

    def as_vector(self) -> tuple[float, float, float, float]:
        return (float(self.fx), float(self.fy), float(self.cx), float(self.cy))

    def pixel_to_norm(self, u_px: np.ndarray, v_px: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Map continuous pixel coordinates (u,v) -> normalized camera coordinates (x=X/Z, y=Y/Z).
        """
        u_px = np.asarray(u_px, dtype=np.float64)
        v_px = np.asarray(v_px, dtype=np.float64)
        return (u_px - self.cx) / self.fx, (v_px - self.cy) / self.fy

    def norm_to_pixel(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Inverse of `pixel_to_norm`."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        return x * self.fx + self.cx, y * self.fy + self.cy


@dataclass(frozen=True)
class NormalizedBounds:
    """
    Axis-aligned box in normalized camera space (y down, like pixel space).
    """

    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def span_x(self) -> float:
        return float(self.max_x - self.min_x)

    @property
    def span_y(self) -> float:
        return float(self.max_y - self.min_y)

    def contains(self, other: NormalizedBounds, tol: float = 0.0) -> bool:
        return (
            self.min_x <= other.min_x + tol
            and self.max_x >= other.max_x - tol
            and self.min_y <= other.min_y + tol
            and self.max_y >= other.max_y - tol
        )

    def strictly_contains(self, other: NormalizedBounds) -> bool:
        return (
            self.min_x < other.min_x
            and self.max_x > other.max_x
            and self.min_y < other.min_y
            and self.max_y > other.max_y
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (float(self.min_x), float(self.max_x), float(self.min_y), float(self.max_y))


def frame_edge_samples(width: int, height: int, samples_per_edge: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Pixel coordinates of `samples_per_edge` points on each edge of the frame [0,w]x[0,h]
    (top, bottom, left, right; corners included). Returns flat (u,v) arrays of length 4*N.
    """
    n = int(samples_per_edge)
    t = np.linspace(0.0, 1.0, n) if n > 1 else np.zeros((1,), dtype=np.float64)
    w = float(width)
    h = float(height)
    along_x = t * w
    along_y = t * h
    u = np.concatenate([along_x, along_x, np.zeros(n), np.full(n, w)])
    v = np.concatenate([np.zeros(n), np.full(n, h), along_y, along_y])
    return u, v


def pixel_center_grid(width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    """Convenience: continuous (u,v) grids of pixel centers, shaped (H,W)."""
    uu, vv = np.meshgrid(np.arange(width, dtype=np.float64) + 0.5, np.arange(height, dtype=np.float64) + 0.5)
    return uu, vv


def horizontal_fov_rad(fx: float, width: int) -> float:
    return float(2.0 * np.arctan(max(1, int(width)) / (2.0 * float(fx))))
