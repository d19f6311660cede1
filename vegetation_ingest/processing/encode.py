"""Transport encoder: base64 byte buffers and a false-colour preview PNG.

Metric grids travel as base64 of the raw little-endian ``float32``
values and ``uint8`` mask bytes (no compression), so a client can
rebuild typed arrays directly.  The preview is an RGBA PNG rendered with
Pillow; invalid pixels are fully transparent.
"""

from __future__ import annotations

import base64
import io

import numpy as np
from PIL import Image

# Normalised position → RGB, interpolated linearly between stops.
PALETTE_STOPS: tuple[tuple[float, tuple[int, int, int]], ...] = (
    (0.0, (93, 123, 223)),
    (0.16, (110, 177, 236)),
    (0.32, (106, 219, 226)),
    (0.5, (129, 216, 156)),
    (0.68, (232, 220, 124)),
    (0.84, (242, 176, 114)),
    (1.0, (226, 126, 134)),
)


def encode_float32(values: np.ndarray) -> str:
    """Base64 of *values* as little-endian ``float32`` bytes."""
    return base64.b64encode(np.asarray(values, dtype="<f4").tobytes()).decode("ascii")


def encode_mask(mask: np.ndarray) -> str:
    """Base64 of *mask* as ``uint8`` bytes (one byte per pixel)."""
    return base64.b64encode(np.asarray(mask, dtype=np.uint8).tobytes()).decode("ascii")


def palette_rgb(normalised: np.ndarray) -> np.ndarray:
    """Map values in [0, 1] to an ``(n, 3)`` ``uint8`` RGB array."""
    positions = [stop for stop, _ in PALETTE_STOPS]
    t = np.clip(np.asarray(normalised, dtype=np.float64), 0.0, 1.0)
    channels = [
        np.interp(t, positions, [rgb[c] for _, rgb in PALETTE_STOPS]) for c in range(3)
    ]
    return np.rint(np.stack(channels, axis=-1)).astype(np.uint8)


def render_preview_png(
    values: np.ndarray,
    valid_mask: np.ndarray,
    width: int,
    height: int,
    value_range: tuple[float, float] | None = None,
) -> str:
    """Render a palette-mapped RGBA preview and return it as base64 PNG.

    Args:
        values: Flat index values (row-major).
        valid_mask: Flat ``uint8`` mask; 0 pixels are transparent.
        width: Grid width.
        height: Grid height.
        value_range: ``(low, high)`` mapped to the palette ends.  Defaults
            to the min/max of the valid values, or (0, 1) when no pixel
            is valid.
    """
    flat = np.asarray(values, dtype=np.float64).ravel()
    valid = np.asarray(valid_mask).astype(bool).ravel()

    if value_range is None:
        value_range = (float(flat[valid].min()), float(flat[valid].max())) if valid.any() else (0.0, 1.0)
    low, high = value_range
    span = max(high - low, 1e-12)

    normalised = np.where(valid, (np.nan_to_num(flat) - low) / span, 0.0)
    rgba = np.zeros((flat.size, 4), dtype=np.uint8)
    rgba[:, :3] = palette_rgb(normalised)
    rgba[:, 3] = np.where(valid, 255, 0)

    image = Image.fromarray(rgba.reshape(height, width, 4))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")
