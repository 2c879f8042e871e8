"""
K-means clustering of normalized customer feature vectors.

Wraps scikit-learn's Lloyd k-means with a fixed random state so a refresh over
unchanged data reproduces the same membership.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ClusterResult:
    """Cluster assignment per row plus one centroid per requested cluster."""

    labels: np.ndarray
    centroids: np.ndarray
    n_clusters: int
    inertia: float = 0.0
    iterations: int = 0
    empty_clusters: List[int] = field(default_factory=list)

    def members_of(self, cluster_index: int) -> np.ndarray:
        """Row indices assigned to ``cluster_index``."""
        return np.flatnonzero(self.labels == cluster_index)

    def cluster_sizes(self) -> List[int]:
        counts = np.bincount(self.labels, minlength=self.n_clusters)
        return [int(c) for c in counts]


class KMeansClusterer:
    """
    Partition rows into k clusters under Euclidean distance.

    When k exceeds the number of distinct rows, only as many clusters as there
    are distinct rows are fitted; the remaining cluster indices stay empty and
    their centroids are NaN.
    """

    def __init__(
        self,
        max_iter: Optional[int] = None,
        n_init: Optional[int] = None,
        random_state: Optional[int] = None,
    ):
        self.max_iter = max_iter or settings.SEGMENT_KMEANS_MAX_ITER
        self.n_init = n_init or settings.SEGMENT_KMEANS_N_INIT
        self.random_state = settings.SEGMENT_KMEANS_RANDOM_STATE if random_state is None else random_state

    def fit(self, features: np.ndarray, k: int) -> ClusterResult:
        """
        Cluster a normalized n x m matrix.

        Args:
            features: Normalized feature matrix
            k: Requested number of clusters (>= 1)

        Returns:
            ClusterResult with ``labels`` (length n) and ``centroids`` (k x m)
        """
        if k < 1:
            raise ValueError("k must be at least 1")

        matrix = np.asarray(features, dtype=float)
        n_samples = matrix.shape[0]
        n_features = matrix.shape[1] if matrix.ndim == 2 else 0

        if n_samples == 0:
            return ClusterResult(
                labels=np.empty(0, dtype=int),
                centroids=np.full((k, n_features), np.nan),
                n_clusters=k,
                empty_clusters=list(range(k)),
            )

        distinct = len(np.unique(matrix, axis=0))
        fitted_k = min(k, distinct)

        logger.debug(
            "Fitting k-means: %d samples, %d features, k=%d (fitted %d)",
            n_samples, n_features, k, fitted_k,
        )

        model = KMeans(
            n_clusters=fitted_k,
            n_init=self.n_init,
            max_iter=self.max_iter,
            algorithm="lloyd",
            random_state=self.random_state,
        )
        with warnings.catch_warnings():
            # Duplicate rows can still leave fewer distinct centres than fitted_k
            warnings.simplefilter("ignore", ConvergenceWarning)
            labels = model.fit_predict(matrix)

        centroids = np.full((k, n_features), np.nan)
        centroids[:fitted_k] = model.cluster_centers_

        result = ClusterResult(
            labels=labels.astype(int),
            centroids=centroids,
            n_clusters=k,
            inertia=float(model.inertia_),
            iterations=int(model.n_iter_),
        )
        result.empty_clusters = [i for i, size in enumerate(result.cluster_sizes()) if size == 0]

        logger.info(
            "K-means complete: k=%d, inertia=%.4f, iterations=%d, empty clusters=%d",
            k, result.inertia, result.iterations, len(result.empty_clusters),
        )
        return result
