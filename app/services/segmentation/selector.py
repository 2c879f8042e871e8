"""
Best-cluster selection.

After clustering, the segment keeps the single cluster whose members score
highest on the clustering type's signal, averaged over the cluster:

- rfm:        total purchase amount (monetary value)
- behavioral: purchase count
- engagement: purchase count + ticket count + invoice count

Signals are read from the raw feature rows, never from normalized values.
Ties go to the lowest cluster index; empty clusters are never selected.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from app.schemas.segment import ClusteringType
from app.services.segmentation.features import CustomerFeatures

SIGNAL_FEATURES: Dict[ClusteringType, Tuple[str, ...]] = {
    ClusteringType.RFM: ("total_purchase_amount",),
    ClusteringType.BEHAVIORAL: ("purchase_count",),
    ClusteringType.ENGAGEMENT: ("purchase_count", "ticket_count", "invoice_count"),
}


@dataclass
class ClusterSummary:
    index: int
    size: int
    average_signal: Optional[float]
    member_ids: List[str] = field(default_factory=list)


@dataclass
class ClusterSelection:
    """Members of the selected cluster and diagnostics for all clusters."""

    member_ids: List[str]
    selected_cluster: Optional[int]
    centroids: List[List[float]] = field(default_factory=list)
    clusters: List[ClusterSummary] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.member_ids


def cluster_signal(row: CustomerFeatures, clustering_type: ClusteringType) -> float:
    return float(sum(row.values[name] for name in SIGNAL_FEATURES[ClusteringType(clustering_type)]))


def select_best_cluster(
    labels: Sequence[int],
    rows: Sequence[CustomerFeatures],
    clustering_type: ClusteringType,
    centroids: Optional[np.ndarray] = None,
    n_clusters: Optional[int] = None,
) -> ClusterSelection:
    """
    Pick the cluster with the highest average signal.

    Args:
        labels: Cluster index per row, aligned with ``rows``
        rows: Raw feature rows
        clustering_type: Selects the signal feature(s)
        centroids: Cluster centroids, passed through for diagnostics
        n_clusters: Total cluster count (defaults to max label + 1)

    Returns:
        ClusterSelection; ``member_ids`` is empty when every cluster is empty
    """
    if len(labels) != len(rows):
        raise ValueError(f"{len(labels)} labels for {len(rows)} feature rows")

    clustering_type = ClusteringType(clustering_type)
    if n_clusters is None:
        n_clusters = (max(labels) + 1) if len(labels) else 0

    buckets: List[List[CustomerFeatures]] = [[] for _ in range(n_clusters)]
    for label, row in zip(labels, rows):
        buckets[int(label)].append(row)

    summaries: List[ClusterSummary] = []
    best: Optional[ClusterSummary] = None
    for index, members in enumerate(buckets):
        average = (
            sum(cluster_signal(row, clustering_type) for row in members) / len(members)
            if members else None
        )
        summary = ClusterSummary(
            index=index,
            size=len(members),
            average_signal=average,
            member_ids=[row.customer_id for row in members],
        )
        summaries.append(summary)
        if average is not None and (best is None or average > best.average_signal):
            best = summary

    centroid_list = np.asarray(centroids).tolist() if centroids is not None else []

    return ClusterSelection(
        member_ids=list(best.member_ids) if best else [],
        selected_cluster=best.index if best else None,
        centroids=centroid_list,
        clusters=summaries,
    )
