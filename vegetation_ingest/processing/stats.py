"""Statistics engine: AOI-aware summary statistics of an index grid."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from vegetation_ingest.models.imagery import IndexStats


def quantile(sorted_values: Sequence[float] | np.ndarray, q: float) -> float:
    """Linear-interpolated quantile of an ascending sequence.

    Exact order statistic at integer positions, linear interpolation
    between neighbours otherwise.  An empty sequence yields 0.
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0
    if n == 1:
        return float(sorted_values[0])
    position = (n - 1) * q
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(sorted_values[lower])
    fraction = position - lower
    return float(sorted_values[lower] * (1 - fraction) + sorted_values[upper] * fraction)


def compute_stats(
    values: np.ndarray,
    valid_mask: np.ndarray,
    aoi_mask: np.ndarray | None = None,
) -> IndexStats:
    """Compute min/max/mean/p10/p90 over AOI-eligible valid pixels.

    Eligible pixels are those covered by *aoi_mask*, or every pixel when
    it is ``None``.  With no valid eligible pixel every statistic is 0.
    """
    valid = np.asarray(valid_mask).astype(bool)
    if aoi_mask is None:
        eligible_count = int(valid.size)
    else:
        eligible = np.asarray(aoi_mask).astype(bool)
        eligible_count = int(eligible.sum())
        valid = valid & eligible

    selected = np.sort(np.asarray(values, dtype=np.float64)[valid])
    valid_count = int(selected.size)
    ratio = valid_count / eligible_count if eligible_count else 0.0

    if valid_count == 0:
        return IndexStats(
            min=0.0,
            max=0.0,
            mean=0.0,
            p10=0.0,
            p90=0.0,
            valid_pixel_ratio=ratio,
            valid_count=0,
            eligible_count=eligible_count,
        )

    return IndexStats(
        min=float(selected[0]),
        max=float(selected[-1]),
        mean=float(selected.mean()),
        p10=quantile(selected, 0.1),
        p90=quantile(selected, 0.9),
        valid_pixel_ratio=ratio,
        valid_count=valid_count,
        eligible_count=eligible_count,
    )
