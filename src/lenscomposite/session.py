from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from lenscomposite.calib import (
    CalibrationData,
    distortion_model,
    explicit_projection,
    image_size,
    intrinsics_xycxcy,
)
from lenscomposite.core.composite import CompositeParameters
from lenscomposite.core.distortion import BrownDistortion
from lenscomposite.core.projection import ProjectionMode, ProjectionResult, build_projection

logger = logging.getLogger(__name__)


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class CompositorSettings:
    exact_cover: bool = True
    use_explicit_projection: bool = True
    samples_per_edge: int = 64
    near_clip: float = 0.01
    far_clip: float = 100.0
    # (0, 0) means: use the calibration image size.
    render_size: tuple[int, int] = (0, 0)

    def __post_init__(self) -> None:
        _require(16 <= int(self.samples_per_edge) <= 1024, "samples_per_edge must be in [16, 1024]")
        _require(float(self.near_clip) > 0.0, "near_clip must be > 0")
        _require(float(self.far_clip) > float(self.near_clip), "far_clip must be > near_clip")
        _require(
            len(self.render_size) == 2 and int(self.render_size[0]) >= 0 and int(self.render_size[1]) >= 0,
            "render_size must be [w,h] with non-negative values",
        )

    @property
    def mode(self) -> ProjectionMode:
        if self.exact_cover:
            return ProjectionMode.EXACT_COVER
        if self.use_explicit_projection:
            return ProjectionMode.MATCH_PROVIDED
        return ProjectionMode.DIRECT


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise SettingsError(msg)


def parse_settings(data: dict[str, Any]) -> CompositorSettings:
    _require(isinstance(data, dict), "settings must be a JSON object")
    known = {"exact_cover", "use_explicit_projection", "samples_per_edge", "near_clip", "far_clip", "render_size"}
    unknown = sorted(set(data) - known)
    _require(not unknown, f"unknown settings keys: {unknown}")

    defaults = CompositorSettings()
    size = data.get("render_size", list(defaults.render_size))
    _require(isinstance(size, (list, tuple)) and len(size) == 2, "render_size must be [w,h]")
    exact_cover = data.get("exact_cover", defaults.exact_cover)
    use_explicit = data.get("use_explicit_projection", defaults.use_explicit_projection)
    _require(isinstance(exact_cover, bool), "exact_cover must be true or false")
    _require(isinstance(use_explicit, bool), "use_explicit_projection must be true or false")
    return CompositorSettings(
        exact_cover=exact_cover,
        use_explicit_projection=use_explicit,
        samples_per_edge=int(data.get("samples_per_edge", defaults.samples_per_edge)),
        near_clip=float(data.get("near_clip", defaults.near_clip)),
        far_clip=float(data.get("far_clip", defaults.far_clip)),
        render_size=(int(size[0]), int(size[1])),
    )


def load_settings(path: Path) -> CompositorSettings:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_settings(data)


@dataclass(frozen=True)
class CompositorSession:
    """
    One calibration plus the projection and composite parameters derived from it.

    Sessions are immutable; `reconfigure` returns a new one.
    """

    calibration: CalibrationData
    settings: CompositorSettings
    size: tuple[int, int]
    projection: ProjectionResult
    composite: CompositeParameters

    @classmethod
    def create(
        cls,
        calibration: CalibrationData,
        settings: CompositorSettings | None = None,
        fallback_size: tuple[int, int] | None = None,
    ) -> CompositorSession:
        settings = settings if settings is not None else CompositorSettings()
        mode = settings.mode

        calib_w, calib_h = image_size(calibration, fallback_size)
        rw, rh = settings.render_size
        size = (int(rw) if rw > 0 else calib_w, int(rh) if rh > 0 else calib_h)

        intr = intrinsics_xycxcy(calibration)
        explicit = explicit_projection(calibration) if mode is ProjectionMode.MATCH_PROVIDED else None
        if mode is ProjectionMode.EXACT_COVER or calibration.distortion is not None:
            # Raises MissingDistortion when exact cover is requested without coefficients.
            dist = distortion_model(calibration)
        else:
            dist = BrownDistortion()

        projection = build_projection(
            intr,
            size,
            mode,
            distortion=dist,
            explicit=explicit,
            near=settings.near_clip,
            far=settings.far_clip,
            samples_per_edge=settings.samples_per_edge,
        )
        composite = CompositeParameters.from_models(intr, dist, projection.virtual_intrinsics, size)

        logger.info(
            "Ready. RT=%dx%d | fx=%.3f fy=%.3f cx=%.3f cy=%.3f | mode=%s samples=%d",
            size[0],
            size[1],
            intr.fx,
            intr.fy,
            intr.cx,
            intr.cy,
            projection.mode.value,
            settings.samples_per_edge,
        )
        return cls(
            calibration=calibration,
            settings=settings,
            size=size,
            projection=projection,
            composite=composite,
        )

    def reconfigure(
        self,
        settings: CompositorSettings | None = None,
        calibration: CalibrationData | None = None,
        fallback_size: tuple[int, int] | None = None,
        **changes: Any,
    ) -> CompositorSession:
        """New session from this one's inputs with the given replacements."""
        base = settings if settings is not None else self.settings
        if changes:
            base = replace(base, **changes)
        fallback = fallback_size if fallback_size is not None else self.size
        return CompositorSession.create(calibration or self.calibration, base, fallback)
