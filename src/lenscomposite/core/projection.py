from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

import numpy as np

from lenscomposite.core.distortion import BrownDistortion
from lenscomposite.core.geometry import NormalizedBounds, PinholeIntrinsics, frame_edge_samples
from lenscomposite.errors import MissingDistortion

logger = logging.getLogger(__name__)

MIN_SAMPLES_PER_EDGE = 16
DEGENERATE_SPAN = 1e-6


class ProjectionMode(str, enum.Enum):
    DIRECT = "direct"
    EXACT_COVER = "exact_cover"
    MATCH_PROVIDED = "match_provided"


@dataclass(frozen=True)
class Frustum:
    """Off-axis perspective volume at the near plane (y up, camera looking down -Z)."""

    left: float
    right: float
    top: float
    bottom: float
    near: float
    far: float

    def __post_init__(self) -> None:
        if not self.near > 0.0:
            raise ValueError(f"near must be > 0, got {self.near}")
        if not self.far > self.near:
            raise ValueError(f"far must be > near, got near={self.near} far={self.far}")
        if not self.left < self.right:
            raise ValueError(f"left must be < right, got left={self.left} right={self.right}")
        if not self.bottom < self.top:
            raise ValueError(f"bottom must be < top, got bottom={self.bottom} top={self.top}")

    def matrix(self) -> np.ndarray:
        return frustum_matrix(self.left, self.right, self.bottom, self.top, self.near, self.far)


def frustum_matrix(left: float, right: float, bottom: float, top: float, near: float, far: float) -> np.ndarray:
    """
    Standard off-axis perspective matrix (glFrustum layout, row-major, clip z in [-1,1]).
    """
    l, r, b, t, n, f = (float(v) for v in (left, right, bottom, top, near, far))
    m = np.zeros((4, 4), dtype=np.float64)
    m[0, 0] = 2.0 * n / (r - l)
    m[0, 2] = (r + l) / (r - l)
    m[1, 1] = 2.0 * n / (t - b)
    m[1, 2] = (t + b) / (t - b)
    m[2, 2] = -(f + n) / (f - n)
    m[2, 3] = -2.0 * f * n / (f - n)
    m[3, 2] = -1.0
    return m


def direct_bounds(intr: PinholeIntrinsics, size: tuple[int, int]) -> NormalizedBounds:
    """Normalized extent of the frame under the pinhole model alone."""
    w, h = float(size[0]), float(size[1])
    return NormalizedBounds(
        min_x=-intr.cx / intr.fx,
        max_x=(w - intr.cx) / intr.fx,
        min_y=-intr.cy / intr.fy,
        max_y=(h - intr.cy) / intr.fy,
    )


def frustum_from_bounds(bounds: NormalizedBounds, near: float, far: float) -> Frustum:
    # Normalized y points down (pixel rows); the frustum's y points up.
    return Frustum(
        left=near * bounds.min_x,
        right=near * bounds.max_x,
        top=-near * bounds.min_y,
        bottom=-near * bounds.max_y,
        near=near,
        far=far,
    )


def direct_frustum(intr: PinholeIntrinsics, size: tuple[int, int], near: float, far: float) -> Frustum:
    """
    Pinhole field of view implied by the intrinsics:
      l = -near*cx/fx, r = near*(w-cx)/fx, t = near*cy/fy, b = -near*(h-cy)/fy
    """
    return frustum_from_bounds(direct_bounds(intr, size), near, far)


def exact_cover_bounds(
    intr: PinholeIntrinsics,
    dist: BrownDistortion,
    size: tuple[int, int],
    samples_per_edge: int = 64,
) -> NormalizedBounds:
    """
    Smallest undistorted normalized box whose distorted image covers the frame [0,w]x[0,h].

    The four frame edges are sampled in (distorted) pixel space and pulled back through the
    distortion inverse; the min/max of the results is the box. This assumes the frame border
    maps to the border of the undistorted region, which holds for well-behaved lenses. With
    non-monotonic distortion the box is only an approximation.
    """
    n = max(MIN_SAMPLES_PER_EDGE, int(samples_per_edge))
    w, h = max(1, int(size[0])), max(1, int(size[1]))
    u, v = frame_edge_samples(w, h, n)
    xd, yd = intr.pixel_to_norm(u, v)
    x, y = dist.undistort(xd, yd)
    return NormalizedBounds(
        min_x=float(np.min(x)),
        max_x=float(np.max(x)),
        min_y=float(np.min(y)),
        max_y=float(np.max(y)),
    )


def is_degenerate(bounds: NormalizedBounds) -> bool:
    """True when the box is not finite or collapses (span <= DEGENERATE_SPAN) on either axis."""
    if not all(np.isfinite(bounds.as_tuple())):
        return True
    return not (bounds.span_x > DEGENERATE_SPAN and bounds.span_y > DEGENERATE_SPAN)


def virtual_intrinsics(
    bounds: NormalizedBounds, size: tuple[int, int], fallback: PinholeIntrinsics
) -> PinholeIntrinsics:
    """
    Intrinsics that map the rendered (w,h) pixel grid linearly onto `bounds`.

    A collapsed span means there is nothing to expand; `fallback` is returned unchanged.
    """
    if is_degenerate(bounds):
        logger.debug("Degenerate cover span (%.3g, %.3g); keeping lens intrinsics", bounds.span_x, bounds.span_y)
        return fallback
    fx = float(size[0]) / bounds.span_x
    fy = float(size[1]) / bounds.span_y
    return PinholeIntrinsics(fx=fx, fy=fy, cx=-bounds.min_x * fx, cy=-bounds.min_y * fy)


@dataclass(frozen=True)
class ProjectionResult:
    mode: ProjectionMode
    matrix: np.ndarray = field(compare=False)
    intrinsics: PinholeIntrinsics
    virtual_intrinsics: PinholeIntrinsics
    frustum: Frustum | None = None
    bounds: NormalizedBounds | None = None

    def to_dict(self) -> dict:
        out: dict = {
            "mode": self.mode.value,
            "matrix": np.asarray(self.matrix, dtype=np.float64).tolist(),
            "intrinsics": list(self.intrinsics.as_vector()),
            "virtual_intrinsics": list(self.virtual_intrinsics.as_vector()),
        }
        if self.frustum is not None:
            f = self.frustum
            out["frustum"] = {
                "left": f.left,
                "right": f.right,
                "top": f.top,
                "bottom": f.bottom,
                "near": f.near,
                "far": f.far,
            }
        if self.bounds is not None:
            out["bounds"] = dict(zip(("min_x", "max_x", "min_y", "max_y"), self.bounds.as_tuple()))
        return out


def build_projection(
    intr: PinholeIntrinsics,
    size: tuple[int, int],
    mode: ProjectionMode = ProjectionMode.EXACT_COVER,
    *,
    distortion: BrownDistortion | None = None,
    explicit: np.ndarray | None = None,
    near: float = 0.01,
    far: float = 100.0,
    samples_per_edge: int = 64,
) -> ProjectionResult:
    """
    Projection for the synthetic-content camera.

    exact_cover needs `distortion` and falls back to direct when the cover box degenerates;
    match_provided uses `explicit` verbatim when given and otherwise behaves like direct.
    """
    mode = ProjectionMode(mode)

    if mode is ProjectionMode.EXACT_COVER:
        if distortion is None:
            raise MissingDistortion("exact_cover projection needs a distortion model")
        bounds = exact_cover_bounds(intr, distortion, size, samples_per_edge)
        if is_degenerate(bounds):
            logger.debug(
                "Exact cover box is degenerate (%s); using the direct frustum and lens intrinsics",
                bounds.as_tuple(),
            )
            mode = ProjectionMode.DIRECT
    if mode is ProjectionMode.EXACT_COVER:
        frustum = frustum_from_bounds(bounds, near, far)
        return ProjectionResult(
            mode=mode,
            matrix=frustum.matrix(),
            intrinsics=intr,
            virtual_intrinsics=virtual_intrinsics(bounds, size, intr),
            frustum=frustum,
            bounds=bounds,
        )

    if mode is ProjectionMode.MATCH_PROVIDED and explicit is not None:
        matrix = np.array(explicit, dtype=np.float64).reshape(4, 4)
        return ProjectionResult(mode=mode, matrix=matrix, intrinsics=intr, virtual_intrinsics=intr)

    bounds = direct_bounds(intr, size)
    frustum = frustum_from_bounds(bounds, near, far)
    return ProjectionResult(
        mode=ProjectionMode.DIRECT,
        matrix=frustum.matrix(),
        intrinsics=intr,
        virtual_intrinsics=intr,
        frustum=frustum,
        bounds=bounds,
    )
