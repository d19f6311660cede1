"""Index computer: normalized-difference grids from two reflectance bands.

``value = (num - den) / (num + den)`` clamped to [-1, 1].  A pixel is
valid only when both bands are strictly positive, neither exceeds 1.5
(saturation) and their sum exceeds ``min_signal`` (dark pixels would
give numerically unstable ratios).  Invalid pixels carry NaN.

NDVI uses (NIR, red); NDMI uses (NIR, SWIR).
"""

from __future__ import annotations

import numpy as np

from vegetation_ingest.core.constants import DEFAULT_MIN_SIGNAL, MAX_VALID_REFLECTANCE
from vegetation_ingest.models.imagery import BandRaster, IndexGrid
from vegetation_ingest.processing.decode import ensure_same_shape


def compute_index_grid(
    numerator: BandRaster,
    denominator: BandRaster,
    min_signal: float = DEFAULT_MIN_SIGNAL,
) -> IndexGrid:
    """Compute ``(numerator - denominator) / (numerator + denominator)``.

    Raises:
        BandDimensionMismatchError: If the bands differ in width/height.
    """
    ensure_same_shape(numerator, denominator)
    num = numerator.reflectance
    den = denominator.reflectance
    total = num + den

    # NaN compares False everywhere, so nodata samples fall out here.
    valid = (
        (num > 0)
        & (den > 0)
        & (num <= MAX_VALID_REFLECTANCE)
        & (den <= MAX_VALID_REFLECTANCE)
        & (total > min_signal)
    )

    values = np.full(num.shape, np.nan, dtype=np.float32)
    values[valid] = np.clip((num[valid] - den[valid]) / total[valid], -1.0, 1.0)

    return IndexGrid(
        values=values,
        valid_mask=valid.astype(np.uint8),
        width=numerator.width,
        height=numerator.height,
    )
