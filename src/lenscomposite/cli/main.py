from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path

from lenscomposite.calib import load_calibration
from lenscomposite.core.composite import alpha_over, distort_layer
from lenscomposite.core.image_io import load_rgb_u8, load_rgba_u8, save_u8
from lenscomposite.session import CompositorSession, CompositorSettings, load_settings


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("calibration", type=Path, help="Calibration JSON (image_size, camera_matrix, distortion_coefficients).")
    p.add_argument("--settings", type=Path, default=None, help="Compositor settings JSON.")
    p.add_argument("--direct", action="store_true", help="Disable exact cover (pinhole field of view only).")
    p.add_argument(
        "--ignore-explicit-projection",
        action="store_true",
        help="With --direct, build from intrinsics even if unity_projection_matrix is present.",
    )
    p.add_argument("--samples-per-edge", type=int, default=None, help="Frame edge samples for exact cover (16..1024).")
    p.add_argument("--near", type=float, default=None)
    p.add_argument("--far", type=float, default=None)
    p.add_argument("--render-size", type=int, nargs=2, default=None, metavar=("W", "H"))
    p.add_argument(
        "--fallback-size",
        type=int,
        nargs=2,
        default=None,
        metavar=("W", "H"),
        help="Frame size to use when the calibration has no image_size.",
    )


def _settings_from_args(args: argparse.Namespace) -> CompositorSettings:
    settings = load_settings(args.settings) if args.settings is not None else CompositorSettings()
    changes: dict = {}
    if args.direct:
        changes["exact_cover"] = False
    if args.ignore_explicit_projection:
        changes["use_explicit_projection"] = False
    if args.samples_per_edge is not None:
        changes["samples_per_edge"] = args.samples_per_edge
    if args.near is not None:
        changes["near_clip"] = args.near
    if args.far is not None:
        changes["far_clip"] = args.far
    if args.render_size is not None:
        changes["render_size"] = tuple(args.render_size)
    return replace(settings, **changes) if changes else settings


def _session_from_args(args: argparse.Namespace) -> CompositorSession:
    settings = _settings_from_args(args)
    calib = load_calibration(args.calibration, require_distortion=settings.exact_cover)
    fallback = tuple(args.fallback_size) if args.fallback_size is not None else None
    return CompositorSession.create(calib, settings, fallback)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="lenscomposite")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="cmd", required=True)

    insp = sub.add_parser("inspect", help="Print projection matrix, frustum and composite parameters as JSON.")
    _add_common(insp)
    insp.add_argument("--out", type=Path, default=None, help="Write the report here instead of stdout.")

    comp = sub.add_parser("composite", help="Distort an RGBA render into lens geometry and overlay it on a frame.")
    _add_common(comp)
    comp.add_argument("--layer", type=Path, required=True, help="Undistorted RGBA render (PNG).")
    comp.add_argument("--frame", type=Path, default=None, help="Camera frame to composite over (omit to keep RGBA).")
    comp.add_argument("--out", type=Path, required=True)

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    if args.cmd == "inspect":
        session = _session_from_args(args)
        report = {
            "schema_version": "lenscomposite.report.v0",
            "calibration": session.calibration.source,
            "size": list(session.size),
            "projection": session.projection.to_dict(),
            "composite": session.composite.to_dict(),
        }
        text = json.dumps(report, indent=2, sort_keys=True)
        if args.out is not None:
            args.out.parent.mkdir(parents=True, exist_ok=True)
            args.out.write_text(text + "\n", encoding="utf-8")
            print(f"Wrote {args.out}")
        else:
            print(text)
        return 0

    if args.cmd == "composite":
        session = _session_from_args(args)
        layer = load_rgba_u8(args.layer)
        w, h = session.size
        if layer.shape[:2] != (h, w):
            raise ValueError(f"{args.layer} size {layer.shape[1]}x{layer.shape[0]} != render size {w}x{h}")
        out = distort_layer(layer, session.composite)
        if args.frame is not None:
            frame = load_rgb_u8(args.frame)
            out = alpha_over(frame, out)
        save_u8(args.out, out)
        print(f"Wrote {args.out}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
