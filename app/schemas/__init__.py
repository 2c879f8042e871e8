from app.schemas.segment import (
    SegmentType,
    RuleOperator,
    ConditionMode,
    ClusteringType,
    SegmentRule,
    RuleCriteria,
    MLConfig,
    MLClusteringCriteria,
    ManualCriteria,
    SegmentCriteria,
    parse_criteria,
    dump_criteria,
    SegmentCreate,
    SegmentUpdate,
    SegmentResponse,
    SegmentDetailResponse,
    SegmentListResponse,
    SegmentAnalysisResponse,
    SegmentMemberResponse,
    SegmentMembersPage,
    RulePreviewResponse,
)

__all__ = [
    "SegmentType",
    "RuleOperator",
    "ConditionMode",
    "ClusteringType",
    "SegmentRule",
    "RuleCriteria",
    "MLConfig",
    "MLClusteringCriteria",
    "ManualCriteria",
    "SegmentCriteria",
    "parse_criteria",
    "dump_criteria",
    "SegmentCreate",
    "SegmentUpdate",
    "SegmentResponse",
    "SegmentDetailResponse",
    "SegmentListResponse",
    "SegmentAnalysisResponse",
    "SegmentMemberResponse",
    "SegmentMembersPage",
    "RulePreviewResponse",
]
