from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from lenscomposite.core.distortion import BrownDistortion
from lenscomposite.core.geometry import PinholeIntrinsics
from lenscomposite.errors import CalibrationError, MalformedCalibration, MissingDistortion, MissingIntrinsics



@dataclass(frozen=True)
class CalibrationData:
    """
    A validated calibration record.

    Field names follow the JSON schema written by OpenCV-style calibration tools:
    image_size [w,h], camera_matrix 3x3, distortion_coefficients [k1,k2,p1,p2(,k3)]
    and an optional row-major 4x4 unity_projection_matrix.
    """

    intrinsics: PinholeIntrinsics
    distortion: tuple[float, float, float, float, float] | None
    image_size: tuple[int, int] | None = None
    explicit_projection: np.ndarray | None = field(default=None, compare=False)
    source: str = "<memory>"


def _require(cond: bool, msg: str, exc: type[CalibrationError] = MalformedCalibration) -> None:
    if not cond:
        raise exc(msg)


def _finite_float(v: Any) -> float | None:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _pixel_count(v: Any) -> int | None:
    # JSON writers may emit 1280.0; bools and fractional values are not sizes.
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    f = _finite_float(v) if isinstance(v, float) else None
    return int(f) if f is not None and f.is_integer() else None


def load_calibration(path: Path, *, require_distortion: bool = True) -> CalibrationData:
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return parse_calibration_json(text, source=str(path), require_distortion=require_distortion)


def parse_calibration_json(text: str, *, source: str = "<memory>", require_distortion: bool = True) -> CalibrationData:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedCalibration(f"{source}: invalid JSON ({e})") from e
    return parse_calibration(data, source=source, require_distortion=require_distortion)


def parse_calibration(
    data: dict[str, Any], *, source: str = "<memory>", require_distortion: bool = True
) -> CalibrationData:
    _require(isinstance(data, dict), f"{source}: calibration record must be a JSON object")

    intrinsics = _parse_intrinsics(data.get("camera_matrix"), source)
    distortion = _parse_distortion(data.get("distortion_coefficients"), source, require_distortion)

    size = None
    size_raw = data.get("image_size")
    if size_raw is not None:
        _require(
            isinstance(size_raw, (list, tuple)) and len(size_raw) >= 2,
            f"{source}: image_size must be [width, height]",
        )
        w = _pixel_count(size_raw[0])
        h = _pixel_count(size_raw[1])
        _require(w is not None and h is not None, f"{source}: image_size values must be integers")
        _require(w > 0 and h > 0, f"{source}: image_size values must be > 0")
        size = (w, h)

    return CalibrationData(
        intrinsics=intrinsics,
        distortion=distortion,
        image_size=size,
        explicit_projection=_parse_projection(data.get("unity_projection_matrix")),
        source=source,
    )


def _parse_intrinsics(m: Any, source: str) -> PinholeIntrinsics:
    _require(m is not None, f"{source}: camera_matrix is required", MissingIntrinsics)
    _require(
        isinstance(m, (list, tuple))
        and len(m) >= 3
        and all(isinstance(row, (list, tuple)) and len(row) >= 3 for row in m[:3]),
        f"{source}: camera_matrix must be 3x3",
        MissingIntrinsics,
    )
    fx = _finite_float(m[0][0])
    fy = _finite_float(m[1][1])
    cx = _finite_float(m[0][2])
    cy = _finite_float(m[1][2])
    _require(
        None not in (fx, fy, cx, cy),
        f"{source}: camera_matrix entries fx, fy, cx, cy must be finite numbers",
        MissingIntrinsics,
    )
    _require(fx > 0 and fy > 0, f"{source}: camera_matrix focal lengths must be > 0", MissingIntrinsics)
    return PinholeIntrinsics(fx=fx, fy=fy, cx=cx, cy=cy)


def _parse_distortion(d: Any, source: str, required: bool) -> tuple[float, float, float, float, float] | None:
    if d is None:
        _require(not required, f"{source}: distortion_coefficients is required", MissingDistortion)
        return None
    _require(isinstance(d, (list, tuple)), f"{source}: distortion_coefficients must be a list", MissingDistortion)
    # OpenCV may export a nested (1,N) array.
    if d and isinstance(d[0], (list, tuple)):
        _require(
            all(isinstance(row, (list, tuple)) for row in d),
            f"{source}: distortion_coefficients mixes nested rows and scalars",
            MissingDistortion,
        )
        flat = [v for row in d for v in row]
    else:
        flat = list(d)
    _require(
        len(flat) >= 4,
        f"{source}: distortion_coefficients needs at least [k1,k2,p1,p2], got {len(flat)} values",
        MissingDistortion,
    )
    vals = [_finite_float(v) for v in flat[:5]]
    _require(None not in vals, f"{source}: distortion_coefficients must be finite numbers", MissingDistortion)
    k1, k2, p1, p2 = vals[:4]
    k3 = vals[4] if len(vals) >= 5 else 0.0
    return (k1, k2, p1, p2, k3)


def _parse_projection(m: Any) -> np.ndarray | None:
    if not isinstance(m, (list, tuple)) or len(m) != 4:
        return None
    if not all(isinstance(row, (list, tuple)) and len(row) == 4 for row in m):
        return None
    vals = [[_finite_float(v) for v in row] for row in m]
    if any(v is None for row in vals for v in row):
        return None
    out = np.asarray(vals, dtype=np.float64)
    out.setflags(write=False)
    return out


def image_size(data: CalibrationData, fallback: tuple[int, int] | None = None) -> tuple[int, int]:
    """
    Declared image size, else the caller's fallback (e.g. the current viewport).
    """
    if data.image_size is not None:
        return data.image_size
    _require(fallback is not None, f"{data.source}: image_size missing and no fallback size given")
    w, h = int(fallback[0]), int(fallback[1])
    _require(w > 0 and h > 0, f"{data.source}: fallback image size must be > 0")
    return (w, h)


def intrinsics_xycxcy(data: CalibrationData) -> PinholeIntrinsics:
    _require(data.intrinsics is not None, f"{data.source}: camera_matrix missing", MissingIntrinsics)
    return data.intrinsics


def radial_coefficients(data: CalibrationData) -> tuple[float, float, float]:
    _require(data.distortion is not None, f"{data.source}: distortion_coefficients missing", MissingDistortion)
    k1, k2, _p1, _p2, k3 = data.distortion
    return (k1, k2, k3)


def tangential_coefficients(data: CalibrationData) -> tuple[float, float]:
    _require(data.distortion is not None, f"{data.source}: distortion_coefficients missing", MissingDistortion)
    _k1, _k2, p1, p2, _k3 = data.distortion
    return (p1, p2)


def distortion_model(data: CalibrationData) -> BrownDistortion:
    k1, k2, k3 = radial_coefficients(data)
    p1, p2 = tangential_coefficients(data)
    return BrownDistortion(k1=k1, k2=k2, p1=p1, p2=p2, k3=k3)


def explicit_projection(data: CalibrationData) -> np.ndarray | None:
    return data.explicit_projection
