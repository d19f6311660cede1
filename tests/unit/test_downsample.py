"""Tests for the area-average downsampler."""

from __future__ import annotations

import numpy as np
import pytest

from vegetation_ingest.processing.downsample import downsample_grid, output_dimensions


class TestOutputDimensions:
    def test_no_reduction_needed(self) -> None:
        assert output_dimensions(100, 50, 256) == (100, 50)

    def test_keeps_aspect_ratio(self) -> None:
        assert output_dimensions(1024, 512, 256) == (256, 128)

    def test_short_side_scaled_with_long_side(self) -> None:
        # 100 already fits 256 but still shrinks with the long side.
        assert output_dimensions(1024, 100, 256) == (256, 25)

    def test_short_side_at_least_one(self) -> None:
        assert output_dimensions(1000, 1, 10) == (10, 1)


class TestDownsampleGrid:
    def test_identity_returns_same_arrays(self) -> None:
        values = np.arange(6, dtype=np.float32)
        mask = np.ones(6, dtype=np.uint8)
        grid = downsample_grid(values, mask, 3, 2, 3)
        assert grid.values is values
        assert grid.valid_mask is mask
        assert (grid.width, grid.height) == (3, 2)

    def test_box_average(self) -> None:
        values = np.array(
            [
                [0.1, 0.3, 0.5, 0.5],
                [0.1, 0.3, 0.5, 0.5],
                [0.2, 0.2, 0.8, 0.6],
                [0.2, 0.2, 0.6, 0.8],
            ],
            dtype=np.float32,
        ).ravel()
        grid = downsample_grid(values, np.ones(16, dtype=np.uint8), 4, 4, 2)
        assert (grid.width, grid.height) == (2, 2)
        np.testing.assert_allclose(grid.values, [0.2, 0.5, 0.2, 0.7], rtol=1e-6)
        assert grid.valid_mask.tolist() == [1, 1, 1, 1]

    def test_invalid_pixels_do_not_contribute(self) -> None:
        values = np.array([0.4, np.nan, 0.6, 0.8], dtype=np.float32)
        mask = np.array([1, 0, 1, 1], dtype=np.uint8)
        grid = downsample_grid(values, mask, 2, 2, 1)
        assert grid.valid_mask.tolist() == [1]
        assert grid.values[0] == pytest.approx(0.6)

    def test_majority_rule(self) -> None:
        # Left box: 2 of 4 valid (exactly half) -> valid.
        # Right box: 1 of 4 valid -> invalid.
        values = np.array(
            [
                [0.5, np.nan, 0.9, np.nan],
                [np.nan, 0.5, np.nan, np.nan],
            ],
            dtype=np.float32,
        ).ravel()
        mask = (~np.isnan(values)).astype(np.uint8)
        grid = downsample_grid(values, mask, 4, 2, 2)
        assert (grid.width, grid.height) == (2, 1)
        assert grid.valid_mask.tolist() == [1, 0]
        assert grid.values[0] == pytest.approx(0.5)
        assert np.isnan(grid.values[1])

    def test_uneven_boxes(self) -> None:
        values = np.arange(5, dtype=np.float32) / 10
        grid = downsample_grid(values, np.ones(5, dtype=np.uint8), 5, 1, 2)
        # Boxes cover columns [0, 2) and [2, 5).
        assert (grid.width, grid.height) == (2, 1)
        np.testing.assert_allclose(grid.values, [0.05, 0.3], rtol=1e-6)

    def test_output_within_target(self) -> None:
        rng = np.random.default_rng(11)
        values = rng.uniform(-1, 1, 300 * 170).astype(np.float32)
        mask = (rng.uniform(size=values.size) > 0.2).astype(np.uint8)
        grid = downsample_grid(values, mask, 300, 170, 64)
        assert max(grid.width, grid.height) == 64
        assert grid.values.size == grid.width * grid.height
        valid = grid.valid_mask.astype(bool)
        assert np.isnan(grid.values[~valid]).all()
        assert (np.abs(grid.values[valid]) <= 1).all()
