"""
Shapes of the external collaborators around the compositor.

Only the boundaries live here: reading calibration text, detecting fiducial markers and
driving network cameras are done by other components.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Protocol

import numpy as np

from lenscomposite.calib import CalibrationData, parse_calibration_json
from lenscomposite.core.geometry import horizontal_fov_rad


class CalibrationReader(Protocol):
    def read_text(self, filename: str) -> str: ...


@dataclass(frozen=True)
class DirectoryCalibrationReader:
    """Reads calibration files from a fixed assets directory."""

    root: Path

    def read_text(self, filename: str) -> str:
        path = Path(self.root) / filename
        if not path.is_file():
            raise FileNotFoundError(f"Calibration file not found: {path}")
        return path.read_text(encoding="utf-8")


def read_calibration(reader: CalibrationReader, filename: str, *, require_distortion: bool = True) -> CalibrationData:
    text = reader.read_text(filename)
    return parse_calibration_json(text, source=filename, require_distortion=require_distortion)


@dataclass(frozen=True)
class TagDetection:
    tag_id: int
    position: np.ndarray
    rotation: np.ndarray  # quaternion (x, y, z, w)


class MarkerDetector(Protocol):
    def detect(self, pixels: np.ndarray, fov_rad: float, tag_size_m: float) -> Iterable[TagDetection]: ...


class CameraSessionManager(Protocol):
    def login_all(self) -> Awaitable[None]: ...

    def start_live_playback(self, camera: Any) -> None: ...


class MarkerFamilyRegistry:
    """
    Explicit registry of marker families a detector can be configured with.

    Families are added by name with a factory; nothing is discovered implicitly.
    """

    def __init__(self) -> None:
        self._factories: dict[str, Callable[[], Any]] = {}

    def register(self, name: str, factory: Callable[[], Any]) -> None:
        key = str(name)
        if key in self._factories:
            raise ValueError(f"marker family already registered: {key}")
        self._factories[key] = factory

    def create(self, name: str) -> Any:
        try:
            factory = self._factories[str(name)]
        except KeyError:
            raise KeyError(f"unknown marker family: {name} (registered: {self.names()})") from None
        return factory()

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories


def horizontal_fov_deg(fx: float, width: int) -> float:
    """Horizontal field of view of a pinhole camera from its focal length in pixels."""
    return math.degrees(horizontal_fov_rad(fx, width))


def horizontal_fov_from_vertical_deg(vertical_fov_deg: float, aspect: float) -> float:
    v = math.radians(float(vertical_fov_deg))
    return math.degrees(2.0 * math.atan(math.tan(0.5 * v) * float(aspect)))
