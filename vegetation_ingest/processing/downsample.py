"""Downsampler: area-average reduction of an index grid.

The source grid is partitioned into ``out_w x out_h`` boxes at integer
boundaries ``floor(o * w / out_w)``.  Each output pixel averages the
valid source pixels in its box and is valid only when at least half of
the box is valid, so thin cloud or nodata slivers cannot dominate it.
"""

from __future__ import annotations

import numpy as np

from vegetation_ingest.core.constants import MAJORITY_VALID_FRACTION
from vegetation_ingest.models.imagery import IndexGrid


def output_dimensions(width: int, height: int, target_size: int) -> tuple[int, int]:
    """Fit ``width x height`` within *target_size*, keeping the aspect ratio.

    Both axes are scaled by the same factor (target over longest side), so
    the shorter side is never clamped on its own.
    """
    longest = max(width, height)
    if target_size >= longest:
        return width, height
    scale = target_size / longest
    return max(1, min(width, round(width * scale))), max(1, min(height, round(height * scale)))


def downsample_grid(
    values: np.ndarray,
    valid_mask: np.ndarray,
    width: int,
    height: int,
    target_size: int,
) -> IndexGrid:
    """Reduce a grid so its longest side is at most *target_size*.

    When *target_size* covers both dimensions the input arrays are
    returned as-is (same objects, no copy).
    """
    if target_size >= width and target_size >= height:
        return IndexGrid(values=values, valid_mask=valid_mask, width=width, height=height)

    out_w, out_h = output_dimensions(width, height, target_size)
    x_edges = (np.arange(out_w) * width) // out_w
    y_edges = (np.arange(out_h) * height) // out_h

    grid = np.asarray(values, dtype=np.float64).reshape(height, width)
    valid = np.asarray(valid_mask).reshape(height, width).astype(bool)

    filled = np.where(valid, grid, 0.0)
    sums = np.add.reduceat(np.add.reduceat(filled, y_edges, axis=0), x_edges, axis=1)
    counts = np.add.reduceat(
        np.add.reduceat(valid.astype(np.int64), y_edges, axis=0), x_edges, axis=1
    )

    box_w = np.diff(np.append(x_edges, width))
    box_h = np.diff(np.append(y_edges, height))
    box_total = np.outer(box_h, box_w)

    out_valid = (counts > 0) & (counts / box_total >= MAJORITY_VALID_FRACTION)
    out_values = np.full((out_h, out_w), np.nan, dtype=np.float32)
    out_values[out_valid] = sums[out_valid] / counts[out_valid]

    return IndexGrid(
        values=out_values.ravel(),
        valid_mask=out_valid.astype(np.uint8).ravel(),
        width=out_w,
        height=out_h,
    )
