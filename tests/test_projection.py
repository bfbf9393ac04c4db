from __future__ import annotations

import numpy as np
import pytest

from lenscomposite.core.distortion import BrownDistortion
from lenscomposite.core.geometry import NormalizedBounds, PinholeIntrinsics
from lenscomposite.core.projection import (
    Frustum,
    ProjectionMode,
    build_projection,
    direct_bounds,
    direct_frustum,
    exact_cover_bounds,
    frustum_from_bounds,
    frustum_matrix,
    is_degenerate,
    virtual_intrinsics,
)
from lenscomposite.errors import MalformedCalibration, MissingDistortion

HD = PinholeIntrinsics(fx=1000.0, fy=1000.0, cx=960.0, cy=540.0)
CAM = PinholeIntrinsics(fx=800.0, fy=800.0, cx=640.0, cy=360.0)
BARREL = BrownDistortion(k1=-0.2, k2=0.05)


def test_direct_frustum_matches_pinhole_formula():
    f = direct_frustum(HD, (1920, 1080), near=0.01, far=100.0)
    assert f.left == pytest.approx(-0.0096, abs=1e-15)
    assert f.right == pytest.approx(0.0096, abs=1e-15)
    assert f.top == pytest.approx(0.0054, abs=1e-15)
    assert f.bottom == pytest.approx(-0.0054, abs=1e-15)
    assert (f.near, f.far) == (0.01, 100.0)


def test_frustum_matrix_layout():
    m = direct_frustum(HD, (1920, 1080), near=0.01, far=100.0).matrix()
    assert m.shape == (4, 4)
    assert m[0, 0] == pytest.approx(2.0 * 1000.0 / 1920.0)
    assert m[1, 1] == pytest.approx(2.0 * 1000.0 / 1080.0)
    assert m[0, 2] == pytest.approx(0.0, abs=1e-12)
    assert m[1, 2] == pytest.approx(0.0, abs=1e-12)
    assert m[2, 2] == pytest.approx(-(100.0 + 0.01) / (100.0 - 0.01))
    assert m[2, 3] == pytest.approx(-2.0 * 100.0 * 0.01 / (100.0 - 0.01))
    assert m[3, 2] == -1.0
    assert m[3, 3] == 0.0


def test_off_center_principal_point_shifts_matrix():
    intr = PinholeIntrinsics(fx=1000.0, fy=1000.0, cx=1000.0, cy=540.0)
    m = direct_frustum(intr, (1920, 1080), near=0.01, far=100.0).matrix()
    assert m[0, 2] == pytest.approx((1920.0 - 2.0 * 1000.0) / 1920.0)


def test_frustum_matrix_projects_frame_corners_to_ndc_corners():
    f = direct_frustum(CAM, (1280, 720), near=0.01, far=100.0)
    m = f.matrix()
    # Top-left pixel (0,0) at depth 5: camera y is up, z looks down -Z.
    z = 5.0
    x = (0.0 - CAM.cx) / CAM.fx * z
    y = -(0.0 - CAM.cy) / CAM.fy * z
    clip = m @ np.array([x, y, -z, 1.0])
    ndc = clip[:3] / clip[3]
    assert ndc[0] == pytest.approx(-1.0)
    assert ndc[1] == pytest.approx(1.0)


def test_frustum_validates_invariants():
    with pytest.raises(ValueError):
        Frustum(left=-1.0, right=1.0, top=1.0, bottom=-1.0, near=0.0, far=10.0)
    with pytest.raises(ValueError):
        Frustum(left=-1.0, right=1.0, top=1.0, bottom=-1.0, near=1.0, far=1.0)
    with pytest.raises(ValueError):
        Frustum(left=1.0, right=-1.0, top=1.0, bottom=-1.0, near=0.1, far=10.0)
    with pytest.raises(ValueError):
        Frustum(left=-1.0, right=1.0, top=-1.0, bottom=1.0, near=0.1, far=10.0)


def test_frustum_matrix_function_matches_dataclass():
    f = frustum_from_bounds(NormalizedBounds(-0.5, 0.7, -0.4, 0.3), near=0.1, far=50.0)
    assert np.array_equal(f.matrix(), frustum_matrix(f.left, f.right, f.bottom, f.top, 0.1, 50.0))
    assert f.top == pytest.approx(0.04)
    assert f.bottom == pytest.approx(-0.03)


def test_exact_cover_without_distortion_equals_direct():
    direct = direct_bounds(CAM, (1280, 720))
    cover = exact_cover_bounds(CAM, BrownDistortion(), (1280, 720), samples_per_edge=64)
    assert np.allclose(cover.as_tuple(), direct.as_tuple(), atol=1e-12)
    v = virtual_intrinsics(cover, (1280, 720), CAM)
    assert np.allclose(v.as_vector(), CAM.as_vector())


def test_exact_cover_contains_direct_for_barrel():
    direct = direct_bounds(CAM, (1280, 720))
    cover = exact_cover_bounds(CAM, BARREL, (1280, 720), samples_per_edge=64)
    assert cover.strictly_contains(direct)
    assert cover.contains(direct)


def test_exact_cover_bounds_hit_frame_when_distorted_back():
    cover = exact_cover_bounds(CAM, BARREL, (1280, 720), samples_per_edge=64)
    # The undistorted left/right extremes sit on the frame's corners for barrel distortion.
    xd, yd = BARREL.distort(np.array([cover.min_x, cover.max_x]), np.array([cover.min_y, cover.max_y]))
    u, v = CAM.norm_to_pixel(xd, yd)
    assert np.allclose(u, [0.0, 1280.0], atol=1e-3)
    assert np.allclose(v, [0.0, 720.0], atol=1e-3)


def test_samples_per_edge_is_clamped_to_minimum():
    a = exact_cover_bounds(CAM, BARREL, (1280, 720), samples_per_edge=4)
    b = exact_cover_bounds(CAM, BARREL, (1280, 720), samples_per_edge=16)
    assert a == b


def test_end_to_end_barrel_widens_virtual_camera():
    res = build_projection(
        CAM,
        (1280, 720),
        ProjectionMode.EXACT_COVER,
        distortion=BARREL,
        near=0.01,
        far=100.0,
        samples_per_edge=64,
    )
    assert res.mode is ProjectionMode.EXACT_COVER
    v = res.virtual_intrinsics
    assert v.fx < CAM.fx
    assert v.fy < CAM.fy
    assert res.frustum is not None
    assert res.frustum.left < -0.01 * CAM.cx / CAM.fx
    assert np.array_equal(res.matrix, res.frustum.matrix())
    # The render's pixel grid spans the cover box.
    assert v.cx == pytest.approx(-res.bounds.min_x * v.fx)
    assert v.fx * res.bounds.span_x == pytest.approx(1280.0)


def test_degenerate_span_keeps_lens_intrinsics():
    point = NormalizedBounds(min_x=0.1, max_x=0.1, min_y=-0.2, max_y=-0.2)
    v = virtual_intrinsics(point, (1280, 720), CAM)
    assert v == CAM
    assert all(np.isfinite(v.as_vector()))

    thin = NormalizedBounds(min_x=-0.5, max_x=0.5, min_y=0.0, max_y=1e-9)
    assert virtual_intrinsics(thin, (1280, 720), CAM) == CAM


def test_direct_and_match_provided_modes():
    res = build_projection(CAM, (1280, 720), ProjectionMode.DIRECT, distortion=BARREL)
    assert res.virtual_intrinsics == CAM
    assert res.bounds == direct_bounds(CAM, (1280, 720))

    explicit = np.arange(16, dtype=np.float64).reshape(4, 4)
    res = build_projection(CAM, (1280, 720), "match_provided", explicit=explicit)
    assert res.mode is ProjectionMode.MATCH_PROVIDED
    assert np.array_equal(res.matrix, explicit)
    assert res.frustum is None
    assert res.virtual_intrinsics == CAM

    res = build_projection(CAM, (1280, 720), ProjectionMode.MATCH_PROVIDED)
    assert res.mode is ProjectionMode.DIRECT
    assert np.array_equal(res.matrix, direct_frustum(CAM, (1280, 720), 0.01, 100.0).matrix())


def test_exact_cover_requires_distortion():
    with pytest.raises(MissingDistortion):
        build_projection(CAM, (1280, 720), ProjectionMode.EXACT_COVER)


def test_projection_report_is_json_friendly():
    d = build_projection(CAM, (1280, 720), distortion=BARREL).to_dict()
    assert d["mode"] == "exact_cover"
    assert len(d["matrix"]) == 4
    assert set(d["frustum"]) == {"left", "right", "top", "bottom", "near", "far"}
    assert d["bounds"]["min_x"] < d["bounds"]["max_x"]


def test_missing_distortion_is_a_calibration_error():
    with pytest.raises(MalformedCalibration):
        build_projection(CAM, (1280, 720), "exact_cover")


def test_is_degenerate():
    assert not is_degenerate(direct_bounds(CAM, (1280, 720)))
    assert is_degenerate(NormalizedBounds(min_x=0.1, max_x=0.1, min_y=-0.5, max_y=0.5))
    assert is_degenerate(NormalizedBounds(min_x=np.nan, max_x=np.nan, min_y=-0.5, max_y=0.5))
    assert is_degenerate(NormalizedBounds(min_x=-np.inf, max_x=np.inf, min_y=-0.5, max_y=0.5))


def test_exact_cover_with_blown_up_distortion_falls_back_to_direct():
    with np.errstate(all="ignore"):
        res = build_projection(CAM, (1280, 720), ProjectionMode.EXACT_COVER, distortion=BrownDistortion(k3=1e308))
    assert res.mode is ProjectionMode.DIRECT
    assert res.virtual_intrinsics == CAM
    assert res.bounds == direct_bounds(CAM, (1280, 720))
    assert np.all(np.isfinite(res.matrix))
    assert np.array_equal(res.matrix, direct_frustum(CAM, (1280, 720), 0.01, 100.0).matrix())
