from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)

NEWTON_ITERATIONS = 5
JACOBIAN_STEP = 1e-3
STEP_TOL_SQ = 1e-14
# Round-trip residual above which the inverse is reported as not converged.
RESIDUAL_WARN = 1e-6
_DET_FLOOR = 1e-12


@dataclass(frozen=True)
class BrownDistortion:
    """
    Brown-Conrady distortion on normalized camera coordinates (x=X/Z, y=Y/Z).

    Parameters follow common OpenCV naming:
      radial: k1, k2, k3
      tangential: p1, p2
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    @classmethod
    def from_coefficients(cls, coeffs: Sequence[float]) -> BrownDistortion:
        """OpenCV ordering [k1, k2, p1, p2(, k3)]; a missing k3 defaults to 0."""
        c = [float(v) for v in coeffs]
        if len(c) < 4:
            raise ValueError("distortion coefficients need at least [k1,k2,p1,p2]")
        return cls(k1=c[0], k2=c[1], p1=c[2], p2=c[3], k3=c[4] if len(c) >= 5 else 0.0)

    def coefficients(self) -> tuple[float, float, float, float, float]:
        return (self.k1, self.k2, self.p1, self.p2, self.k3)

    @property
    def is_identity(self) -> bool:
        return not any(self.coefficients())

    def distort(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r2 = x * x + y * y
        r4 = r2 * r2
        r6 = r4 * r2
        radial = 1.0 + self.k1 * r2 + self.k2 * r4 + self.k3 * r6
        x2 = x * x
        y2 = y * y
        xy = x * y
        x_tan = 2.0 * self.p1 * xy + self.p2 * (r2 + 2.0 * x2)
        y_tan = self.p1 * (r2 + 2.0 * y2) + 2.0 * self.p2 * xy
        xd = x * radial + x_tan
        yd = y * radial + y_tan
        return xd, yd

    def undistort(
        self, xd: np.ndarray, yd: np.ndarray, iterations: int = NEWTON_ITERATIONS
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Newton inverse of distort(), started at the distorted point.

        The Jacobian is estimated with central differences (step JACOBIAN_STEP). Each point
        stops updating once its squared step falls below STEP_TOL_SQ; the loop never runs
        more than `iterations` times. This is a best-effort estimate: with extreme
        coefficients the result may not be a converged root, which is logged, not raised.
        """
        xd = np.asarray(xd, dtype=np.float64)
        yd = np.asarray(yd, dtype=np.float64)
        xd, yd = np.broadcast_arrays(xd, yd)
        x = xd.copy()
        y = yd.copy()
        active = np.ones(x.shape, dtype=bool)
        eps = JACOBIAN_STEP

        for _ in range(int(iterations)):
            fx, fy = self.distort(x, y)
            fx = fx - xd
            fy = fy - yd

            # Central differences: column 0 is d/dx, column 1 is d/dy.
            xpx, ypx = self.distort(x + eps, y)
            xmx, ymx = self.distort(x - eps, y)
            xpy, ypy = self.distort(x, y + eps)
            xmy, ymy = self.distort(x, y - eps)
            a = (xpx - xmx) / (2.0 * eps)
            c = (ypx - ymx) / (2.0 * eps)
            b = (xpy - xmy) / (2.0 * eps)
            d = (ypy - ymy) / (2.0 * eps)

            det = a * d - b * c
            det = np.where(np.abs(det) < _DET_FLOOR, np.copysign(_DET_FLOOR, det), det)
            dx = (d * fx - b * fy) / det
            dy = (-c * fx + a * fy) / det

            x = np.where(active, x - dx, x)
            y = np.where(active, y - dy, y)
            active &= (dx * dx + dy * dy) >= STEP_TOL_SQ
            if not np.any(active):
                break

        res = self.inverse_residual(x, y, xd, yd)
        bad = ~(res <= RESIDUAL_WARN)
        if np.any(bad):
            logger.warning(
                "Distortion inverse did not converge for %d point(s) after %d iterations (max residual %.3g)",
                int(np.count_nonzero(bad)),
                int(iterations),
                float(np.max(res)),
            )
        return x, y

    def inverse_residual(self, x: np.ndarray, y: np.ndarray, xd: np.ndarray, yd: np.ndarray) -> np.ndarray:
        """Euclidean distance between distort(x,y) and the target (xd,yd)."""
        x_est, y_est = self.distort(x, y)
        return np.hypot(x_est - np.asarray(xd, dtype=np.float64), y_est - np.asarray(yd, dtype=np.float64))


def brown_from_dict(d: dict) -> BrownDistortion:
    return BrownDistortion(
        k1=float(d.get("k1", 0.0)),
        k2=float(d.get("k2", 0.0)),
        p1=float(d.get("p1", 0.0)),
        p2=float(d.get("p2", 0.0)),
        k3=float(d.get("k3", 0.0)),
    )


def brown_to_dict(m: BrownDistortion) -> dict:
    return {"k1": m.k1, "k2": m.k2, "p1": m.p1, "p2": m.p2, "k3": m.k3}
