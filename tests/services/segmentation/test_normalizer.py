"""Tests for min-max feature normalization."""

import numpy as np
import pytest

from app.services.segmentation.normalizer import normalize_features


class TestNormalizeFeatures:
    """Per-column min-max scaling."""

    def test_values_within_unit_interval(self):
        rng = np.random.default_rng(3)
        matrix = rng.normal(loc=50, scale=200, size=(40, 4))

        normalized = normalize_features(matrix)

        assert normalized.shape == (40, 4)
        assert normalized.min() >= 0.0
        assert normalized.max() <= 1.0

    def test_column_extremes_map_to_zero_and_one(self):
        normalized = normalize_features([[10, 1], [20, 2], [30, 3]])

        np.testing.assert_allclose(normalized[:, 0], [0.0, 0.5, 1.0])
        np.testing.assert_allclose(normalized[:, 1], [0.0, 0.5, 1.0])

    def test_constant_column_is_all_zeros(self):
        normalized = normalize_features([[5, 1], [5, 7], [5, 3]])

        np.testing.assert_array_equal(normalized[:, 0], [0.0, 0.0, 0.0])

    def test_idempotent(self):
        matrix = [[999, 2, 150.0], [3, 8, 1200.0], [40, 0, 0.0], [40, 0, 0.0]]

        once = normalize_features(matrix)
        twice = normalize_features(once)

        np.testing.assert_allclose(once, twice)

    def test_single_row_is_all_zeros(self):
        normalized = normalize_features([[12.0, 4.0, 999.0]])

        np.testing.assert_array_equal(normalized, [[0.0, 0.0, 0.0]])

    def test_empty_matrix_keeps_column_count(self):
        normalized = normalize_features(np.empty((0, 3)))

        assert normalized.shape == (0, 3)

    def test_one_dimensional_input_rejected(self):
        with pytest.raises(ValueError):
            normalize_features([1.0, 2.0, 3.0])
