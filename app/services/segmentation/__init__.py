"""
Customer segmentation engine.

Rule-based filtering and k-means clustering (RFM, behavioral, engagement)
over an owner's customers, with per-segment analytics.
"""

from app.services.segmentation.analytics import (
    SegmentAnalyticsCalculator,
    SegmentMetrics,
    calculate_metrics,
)
from app.services.segmentation.clustering import ClusterResult, KMeansClusterer
from app.services.segmentation.features import (
    CustomerFeatures,
    FeatureExtractor,
    extract_features,
    feature_matrix,
)
from app.services.segmentation.membership import (
    MembershipRefreshResult,
    SegmentLockRegistry,
    SegmentMembershipManager,
    segment_locks,
)
from app.services.segmentation.normalizer import normalize_features
from app.services.segmentation.rules import FieldDefinition, RuleEvaluator
from app.services.segmentation.selector import (
    ClusterSelection,
    ClusterSummary,
    cluster_signal,
    select_best_cluster,
)
from app.services.segmentation.service import SegmentationService, predefined_segment_definitions

__all__ = [
    "SegmentationService",
    "predefined_segment_definitions",
    "SegmentMembershipManager",
    "MembershipRefreshResult",
    "SegmentLockRegistry",
    "segment_locks",
    "SegmentAnalyticsCalculator",
    "SegmentMetrics",
    "calculate_metrics",
    "RuleEvaluator",
    "FieldDefinition",
    "FeatureExtractor",
    "CustomerFeatures",
    "extract_features",
    "feature_matrix",
    "normalize_features",
    "KMeansClusterer",
    "ClusterResult",
    "select_best_cluster",
    "cluster_signal",
    "ClusterSelection",
    "ClusterSummary",
]
