"""Min-max feature normalization."""

from typing import Sequence, Union

import numpy as np

FeatureMatrix = Union[np.ndarray, Sequence[Sequence[float]]]


def normalize_features(features: FeatureMatrix) -> np.ndarray:
    """
    Rescale each column of an n x m matrix to [0, 1].

    ``(value - min) / (max - min)`` per column; a zero-variance column maps to
    all zeros. Zero rows give an empty ``(0, m)`` matrix.
    """
    matrix = np.asarray(features, dtype=float)
    if matrix.size == 0:
        columns = matrix.shape[1] if matrix.ndim == 2 else 0
        return np.empty((0, columns), dtype=float)
    if matrix.ndim != 2:
        raise ValueError(f"expected a 2-D feature matrix, got shape {matrix.shape}")

    mins = matrix.min(axis=0)
    ranges = matrix.max(axis=0) - mins

    normalized = np.zeros_like(matrix)
    varying = ranges > 0
    normalized[:, varying] = (matrix[:, varying] - mins[varying]) / ranges[varying]
    # Clamp rounding noise so every value stays inside [0, 1]
    return np.clip(normalized, 0.0, 1.0)
