from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def load_rgba_u8(path: str | Path) -> np.ndarray:
    """
    Load an image as (H,W,4) uint8 RGBA. Images without alpha come back fully opaque.
    """
    with Image.open(Path(path)) as im:
        im = im.convert("RGBA")
        arr = np.asarray(im, dtype=np.uint8)
    return arr


def load_rgb_u8(path: str | Path) -> np.ndarray:
    with Image.open(Path(path)) as im:
        im = im.convert("RGB")
        arr = np.asarray(im, dtype=np.uint8)
    return arr


def save_u8(path: str | Path, img: np.ndarray) -> Path:
    """Save an (H,W), (H,W,3) or (H,W,4) uint8 array; the format follows the suffix."""
    p = Path(path)
    arr = np.ascontiguousarray(img, dtype=np.uint8)
    if arr.ndim == 3 and arr.shape[2] not in (3, 4):
        raise ValueError(f"unsupported channel count: {arr.shape[2]}")
    p.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(arr).save(p)
    return p
