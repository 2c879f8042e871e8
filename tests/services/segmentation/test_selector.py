"""Tests for best-cluster selection."""

import numpy as np
import pytest

from app.schemas.segment import ClusteringType
from app.services.segmentation.features import CustomerFeatures
from app.services.segmentation.selector import cluster_signal, select_best_cluster


def rfm_row(customer_id: str, amount: float) -> CustomerFeatures:
    return CustomerFeatures(
        customer_id,
        {"recency_days": 10, "purchase_count": 1, "total_purchase_amount": amount},
    )


class TestSelectBestCluster:
    """Highest average signal wins."""

    def test_picks_highest_average_monetary_cluster(self):
        rows = [
            rfm_row("a", 40), rfm_row("b", 60),    # cluster 0: avg 50
            rfm_row("c", 150), rfm_row("d", 250),  # cluster 1: avg 200
            rfm_row("e", 10),                      # cluster 2: avg 10
        ]
        labels = [0, 0, 1, 1, 2]

        selection = select_best_cluster(labels, rows, ClusteringType.RFM)

        assert selection.selected_cluster == 1
        assert selection.member_ids == ["c", "d"]
        assert [c.average_signal for c in selection.clusters] == [50, 200, 10]

    def test_tie_goes_to_lowest_index(self):
        rows = [rfm_row("a", 100), rfm_row("b", 100)]

        selection = select_best_cluster([1, 0], rows, ClusteringType.RFM)

        assert selection.selected_cluster == 0
        assert selection.member_ids == ["b"]

    def test_empty_clusters_are_skipped(self):
        rows = [rfm_row("a", 5), rfm_row("b", 7)]

        selection = select_best_cluster([0, 2], rows, ClusteringType.RFM, n_clusters=4)

        assert selection.selected_cluster == 2
        assert selection.clusters[1].size == 0
        assert selection.clusters[1].average_signal is None
        assert len(selection.clusters) == 4

    def test_all_clusters_empty(self):
        selection = select_best_cluster([], [], ClusteringType.RFM, n_clusters=3)

        assert selection.member_ids == []
        assert selection.selected_cluster is None
        assert selection.is_empty

    def test_engagement_signal_sums_activity(self):
        row = CustomerFeatures(
            "a",
            {
                "account_age_days": 300,
                "purchase_count": 4,
                "ticket_count": 2,
                "invoice_count": 3,
                "recency_days": 20,
            },
        )

        assert cluster_signal(row, ClusteringType.ENGAGEMENT) == 9

    def test_behavioral_signal_is_purchase_count(self):
        frequent = CustomerFeatures(
            "a", {"purchase_count": 12, "average_purchase_value": 5, "open_ticket_count": 0, "total_quantity": 30}
        )
        rare = CustomerFeatures(
            "b", {"purchase_count": 1, "average_purchase_value": 900, "open_ticket_count": 0, "total_quantity": 1}
        )

        selection = select_best_cluster([0, 1], [frequent, rare], ClusteringType.BEHAVIORAL)

        assert selection.member_ids == ["a"]

    def test_centroids_passed_through(self):
        centroids = np.array([[0.1, 0.2, 0.3], [np.nan, np.nan, np.nan]])

        selection = select_best_cluster([0], [rfm_row("a", 1)], ClusteringType.RFM, centroids=centroids, n_clusters=2)

        assert selection.centroids[0] == [0.1, 0.2, 0.3]
        assert len(selection.centroids) == 2

    def test_label_count_mismatch(self):
        with pytest.raises(ValueError):
            select_best_cluster([0, 1], [rfm_row("a", 1)], ClusteringType.RFM)
