from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from lenscomposite.core.distortion import BrownDistortion
from lenscomposite.core.geometry import PinholeIntrinsics, pixel_center_grid

Vec4 = tuple[float, float, float, float]


@dataclass(frozen=True)
class CompositeParameters:
    """
    Everything the per-pixel sampling stage needs, as five 4-vectors:

      cam_intrinsics      (fx, fy, cx, cy)      real lens, pixel units
      dist_radial         (k1, k2, k3, 0)
      dist_tangential     (p1, p2, 0, 0)
      virtual_intrinsics  (fx', fy', cx', cy')  rendered layer; equals cam_intrinsics outside exact cover
      tex_size            (w, h, 1/w, 1/h)      output size
    """

    cam_intrinsics: Vec4
    dist_radial: Vec4
    dist_tangential: Vec4
    virtual_intrinsics: Vec4
    tex_size: Vec4

    @classmethod
    def from_models(
        cls,
        intr: PinholeIntrinsics,
        dist: BrownDistortion,
        virtual: PinholeIntrinsics,
        size: tuple[int, int],
    ) -> CompositeParameters:
        w, h = float(size[0]), float(size[1])
        if w <= 0 or h <= 0:
            raise ValueError(f"output size must be > 0, got {size}")
        return cls(
            cam_intrinsics=intr.as_vector(),
            dist_radial=(float(dist.k1), float(dist.k2), float(dist.k3), 0.0),
            dist_tangential=(float(dist.p1), float(dist.p2), 0.0, 0.0),
            virtual_intrinsics=virtual.as_vector(),
            tex_size=(w, h, 1.0 / w, 1.0 / h),
        )

    @property
    def size(self) -> tuple[int, int]:
        return int(round(self.tex_size[0])), int(round(self.tex_size[1]))

    def lens_intrinsics(self) -> PinholeIntrinsics:
        return PinholeIntrinsics(*self.cam_intrinsics)

    def render_intrinsics(self) -> PinholeIntrinsics:
        return PinholeIntrinsics(*self.virtual_intrinsics)

    def distortion(self) -> BrownDistortion:
        k1, k2, k3, _ = self.dist_radial
        p1, p2, _, _ = self.dist_tangential
        return BrownDistortion(k1=k1, k2=k2, p1=p1, p2=p2, k3=k3)

    def as_uniforms(self) -> dict[str, Vec4]:
        return {
            "cam_intrinsics": self.cam_intrinsics,
            "dist_radial": self.dist_radial,
            "dist_tangential": self.dist_tangential,
            "virtual_intrinsics": self.virtual_intrinsics,
            "tex_size": self.tex_size,
        }

    def to_dict(self) -> dict[str, list[float]]:
        return {k: [float(c) for c in v] for k, v in self.as_uniforms().items()}


def sample_positions(params: CompositeParameters, u_px: np.ndarray, v_px: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Output (lens) pixel -> continuous pixel position in the undistorted render.

    Lens pixel -> normalized (real intrinsics) -> distortion inverse -> render pixel
    (virtual intrinsics). Pure and element-wise.
    """
    xd, yd = params.lens_intrinsics().pixel_to_norm(u_px, v_px)
    x, y = params.distortion().undistort(xd, yd)
    return params.render_intrinsics().norm_to_pixel(x, y)


def sampling_maps(
    params: CompositeParameters, out_size: tuple[int, int] | None = None
) -> tuple[np.ndarray, np.ndarray]:
    """
    (map_x, map_y) float32 maps shaped (H,W) for cv2.remap.

    Output pixel centers are evaluated at (i+0.5, j+0.5) in the continuous frame; the
    returned maps use OpenCV's convention (pixel centers at integer coordinates).
    """
    w, h = out_size if out_size is not None else params.size
    uu, vv = pixel_center_grid(int(w), int(h))
    us, vs = sample_positions(params, uu, vv)
    map_x = (us - 0.5).astype(np.float32)
    map_y = (vs - 0.5).astype(np.float32)
    return map_x, map_y


def distort_layer(
    layer: np.ndarray,
    params: CompositeParameters,
    maps: tuple[np.ndarray, np.ndarray] | None = None,
) -> np.ndarray:
    """
    Resample the undistorted render into lens geometry.

    Bilinear sampling; anything outside the render reads as 0 (fully transparent for RGBA),
    which gives the soft falloff at the border when the cover is not exact.
    """
    layer = np.asarray(layer)
    if layer.ndim not in (2, 3):
        raise ValueError(f"layer must be (H,W) or (H,W,C), got shape {layer.shape}")
    map_x, map_y = maps if maps is not None else sampling_maps(params)
    return cv2.remap(
        layer,
        map_x,
        map_y,
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )


def alpha_over(frame: np.ndarray, layer_rgba: np.ndarray) -> np.ndarray:
    """
    Composite a straight-alpha RGBA uint8 layer over an RGB uint8 frame of the same size.
    """
    frame = np.asarray(frame)
    layer_rgba = np.asarray(layer_rgba)
    if layer_rgba.ndim != 3 or layer_rgba.shape[2] != 4:
        raise ValueError(f"layer must be (H,W,4) RGBA, got shape {layer_rgba.shape}")
    if frame.shape[:2] != layer_rgba.shape[:2]:
        raise ValueError(f"frame {frame.shape[:2]} and layer {layer_rgba.shape[:2]} sizes differ")
    if frame.ndim == 2:
        frame = np.repeat(frame[:, :, None], 3, axis=2)

    a = layer_rgba[:, :, 3:4].astype(np.float32) / 255.0
    fg = layer_rgba[:, :, :3].astype(np.float32)
    bg = frame[:, :, :3].astype(np.float32)
    out = fg * a + bg * (1.0 - a)
    return np.clip(out + 0.5, 0.0, 255.0).astype(np.uint8)
