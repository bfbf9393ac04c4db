from __future__ import annotations

import numpy as np
import pytest

from lenscomposite.core.composite import (
    CompositeParameters,
    alpha_over,
    distort_layer,
    sample_positions,
    sampling_maps,
)
from lenscomposite.core.distortion import BrownDistortion
from lenscomposite.core.geometry import PinholeIntrinsics, pixel_center_grid
from lenscomposite.core.projection import ProjectionMode, build_projection

# Small frame so the per-pixel tests stay fast.
SIZE = (160, 90)
CAM = PinholeIntrinsics(fx=100.0, fy=100.0, cx=80.0, cy=45.0)
BARREL = BrownDistortion(k1=-0.2, k2=0.05)


def _params(mode: ProjectionMode, dist: BrownDistortion = BARREL) -> CompositeParameters:
    res = build_projection(CAM, SIZE, mode, distortion=dist, samples_per_edge=64)
    return CompositeParameters.from_models(CAM, dist, res.virtual_intrinsics, SIZE)


def _opaque_layer(color=(200, 100, 50)) -> np.ndarray:
    layer = np.zeros((SIZE[1], SIZE[0], 4), dtype=np.uint8)
    layer[:, :, :3] = color
    layer[:, :, 3] = 255
    return layer


def test_parameter_vectors():
    dist = BrownDistortion(k1=-0.2, k2=0.05, p1=0.001, p2=0.002, k3=0.003)
    virtual = PinholeIntrinsics(fx=90.0, fy=91.0, cx=85.0, cy=50.0)
    p = CompositeParameters.from_models(CAM, dist, virtual, (1280, 720))
    assert p.cam_intrinsics == (100.0, 100.0, 80.0, 45.0)
    assert p.dist_radial == (-0.2, 0.05, 0.003, 0.0)
    assert p.dist_tangential == (0.001, 0.002, 0.0, 0.0)
    assert p.virtual_intrinsics == (90.0, 91.0, 85.0, 50.0)
    assert p.tex_size == (1280.0, 720.0, 1.0 / 1280.0, 1.0 / 720.0)
    assert p.size == (1280, 720)
    assert p.distortion() == dist
    assert set(p.to_dict()) == {"cam_intrinsics", "dist_radial", "dist_tangential", "virtual_intrinsics", "tex_size"}


def test_parameters_reject_empty_size():
    with pytest.raises(ValueError):
        CompositeParameters.from_models(CAM, BARREL, CAM, (0, 720))


def test_direct_mode_uses_lens_intrinsics_for_sampling():
    p = _params(ProjectionMode.DIRECT)
    assert p.virtual_intrinsics == p.cam_intrinsics


def test_identity_without_distortion():
    p = _params(ProjectionMode.DIRECT, BrownDistortion())
    map_x, map_y = sampling_maps(p)
    assert map_x.shape == (SIZE[1], SIZE[0])
    assert map_x.dtype == np.float32
    uu, vv = np.meshgrid(np.arange(SIZE[0]), np.arange(SIZE[1]))
    assert np.allclose(map_x, uu, atol=1e-4)
    assert np.allclose(map_y, vv, atol=1e-4)

    rng = np.random.default_rng(0)
    layer = rng.integers(0, 256, size=(SIZE[1], SIZE[0], 4), dtype=np.uint8)
    out = distort_layer(layer, p)
    assert out.shape == layer.shape
    assert np.max(np.abs(out.astype(np.int32) - layer.astype(np.int32))) <= 1


def test_exact_cover_samples_stay_inside_render():
    p = _params(ProjectionMode.EXACT_COVER)
    uu, vv = pixel_center_grid(*SIZE)
    us, vs = sample_positions(p, uu, vv)
    assert np.all(us >= 0.0) and np.all(us <= SIZE[0])
    assert np.all(vs >= 0.0) and np.all(vs <= SIZE[1])

    out = distort_layer(_opaque_layer(), p)
    assert out[:, :, 3].min() > 128
    assert tuple(out[SIZE[1] // 2, SIZE[0] // 2]) == (200, 100, 50, 255)


def test_direct_mode_leaves_transparent_corners_for_barrel():
    p = _params(ProjectionMode.DIRECT)
    out = distort_layer(_opaque_layer(), p)
    assert out[0, 0, 3] == 0
    assert out[-1, -1, 3] == 0
    assert out[SIZE[1] // 2, SIZE[0] // 2, 3] == 255


def test_sample_positions_invert_lens_distortion():
    p = _params(ProjectionMode.EXACT_COVER)
    # A render pixel, pushed through the lens model, must sample back to itself.
    render = p.render_intrinsics()
    x, y = render.pixel_to_norm(np.array([30.0, 120.0]), np.array([20.0, 70.0]))
    u, v = CAM.norm_to_pixel(*BARREL.distort(x, y))
    us, vs = sample_positions(p, u, v)
    assert np.allclose(us, [30.0, 120.0], atol=1e-3)
    assert np.allclose(vs, [20.0, 70.0], atol=1e-3)


def test_distort_layer_rejects_bad_shape():
    p = _params(ProjectionMode.DIRECT)
    with pytest.raises(ValueError):
        distort_layer(np.zeros((2, 2, 2, 2), dtype=np.uint8), p)


def test_alpha_over():
    frame = np.full((2, 3, 3), 10, dtype=np.uint8)
    layer = np.zeros((2, 3, 4), dtype=np.uint8)
    layer[:, :, :3] = 250
    layer[0, 0, 3] = 255
    layer[0, 1, 3] = 0
    layer[0, 2, 3] = 128
    out = alpha_over(frame, layer)
    assert out.dtype == np.uint8
    assert tuple(out[0, 0]) == (250, 250, 250)
    assert tuple(out[0, 1]) == (10, 10, 10)
    assert abs(int(out[0, 2, 0]) - 130) <= 1


def test_alpha_over_checks_shapes():
    with pytest.raises(ValueError):
        alpha_over(np.zeros((4, 4, 3), np.uint8), np.zeros((4, 4, 3), np.uint8))
    with pytest.raises(ValueError):
        alpha_over(np.zeros((4, 5, 3), np.uint8), np.zeros((4, 4, 4), np.uint8))
