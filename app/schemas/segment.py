"""
Segment Schemas

Criteria are exchanged with clients (and persisted) as JSON in the shape the
segment builder sends:

    {"rules": [{"field": "totalPurchases", "operator": "gte", "value": 1000}], "conditions": "AND"}
    {"mlConfig": {"type": "rfm", "clusters": 3, "features": []}}

``parse_criteria`` turns that JSON into the variant matching the segment type
and is the only place it is parsed.
"""

from __future__ import annotations

import json
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
from datetime import datetime
from typing import Optional, Any, Union
from enum import Enum

from app.config import settings
from app.exceptions import ValidationError


class SegmentType(str, Enum):
    MANUAL = "manual"
    RULE_BASED = "rule-based"
    ML_CLUSTERING = "ml-clustering"


class RuleOperator(str, Enum):
    EQUALS = "eq"
    NOT_EQUALS = "neq"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUALS = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUALS = "lte"
    CONTAINS = "contains"
    IN = "in"
    BETWEEN = "between"


class ConditionMode(str, Enum):
    AND = "AND"
    OR = "OR"


class ClusteringType(str, Enum):
    RFM = "rfm"
    BEHAVIORAL = "behavioral"
    ENGAGEMENT = "engagement"


# Ordered feature columns extracted for each clustering type
FEATURE_NAMES: dict[ClusteringType, tuple[str, ...]] = {
    ClusteringType.RFM: ("recency_days", "purchase_count", "total_purchase_amount"),
    ClusteringType.BEHAVIORAL: ("purchase_count", "average_purchase_value", "open_ticket_count", "total_quantity"),
    ClusteringType.ENGAGEMENT: ("account_age_days", "purchase_count", "ticket_count", "invoice_count", "recency_days"),
}


# ============================================
# Criteria
# ============================================


class SegmentRule(BaseModel):
    """Single field/operator/value predicate."""
    field: str = Field(..., min_length=1, description="Customer field (e.g. 'totalPurchases', 'city')")
    # Kept as a plain string: how unknown operators are handled is the evaluator's policy
    operator: str = Field(..., min_length=1)
    value: Any = Field(None, description="Value to compare against; [low, high] for 'between'")


class ManualCriteria(BaseModel):
    """Manual segments carry no criteria."""
    model_config = ConfigDict(extra="ignore")


class RuleCriteria(BaseModel):
    """Rule set combined with AND/OR."""
    model_config = ConfigDict(extra="ignore")

    rules: list[SegmentRule] = Field(default_factory=list)
    conditions: ConditionMode = ConditionMode.AND

    @field_validator("conditions", mode="before")
    @classmethod
    def upper_conditions(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class MLConfig(BaseModel):
    """K-means configuration."""
    model_config = ConfigDict(populate_by_name=True)

    type: ClusteringType
    clusters: int = Field(3, ge=1, validation_alias=AliasChoices("clusters", "k"))
    features: list[str] = Field(
        default_factory=list,
        description="Subset of the type's feature columns to cluster on; empty means all",
    )

    @field_validator("clusters")
    @classmethod
    def cap_clusters(cls, v: int) -> int:
        if v > settings.SEGMENT_MAX_CLUSTERS:
            raise ValueError(f"at most {settings.SEGMENT_MAX_CLUSTERS} clusters are supported")
        return v

    @model_validator(mode="after")
    def check_features(self) -> "MLConfig":
        allowed = FEATURE_NAMES[self.type]
        unknown = [name for name in self.features if name not in allowed]
        if unknown:
            raise ValueError(
                f"unknown {self.type.value} features {unknown}; expected any of {list(allowed)}"
            )
        return self

    @property
    def k(self) -> int:
        return self.clusters

    @property
    def feature_columns(self) -> tuple[str, ...]:
        """Features to cluster on, in extraction order."""
        allowed = FEATURE_NAMES[self.type]
        if not self.features:
            return allowed
        return tuple(name for name in allowed if name in self.features)


class MLClusteringCriteria(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ml_config: MLConfig = Field(..., alias="mlConfig")


SegmentCriteria = Union[ManualCriteria, RuleCriteria, MLClusteringCriteria]

_CRITERIA_MODELS: dict[SegmentType, type[BaseModel]] = {
    SegmentType.MANUAL: ManualCriteria,
    SegmentType.RULE_BASED: RuleCriteria,
    SegmentType.ML_CLUSTERING: MLClusteringCriteria,
}


def coerce_segment_type(segment_type: Union[str, SegmentType]) -> SegmentType:
    try:
        return SegmentType(segment_type)
    except ValueError:
        allowed = ", ".join(t.value for t in SegmentType)
        raise ValidationError(
            f"Invalid segmentType '{segment_type}'; expected one of: {allowed}",
            errors=[{"field": "segmentType", "message": f"expected one of: {allowed}", "type": "enum"}],
        )


def parse_criteria(raw: Any, segment_type: Union[str, SegmentType]) -> SegmentCriteria:
    """
    Validate criteria for a segment type.

    Args:
        raw: Criteria as a dict, JSON text (as persisted) or an already parsed model
        segment_type: The segment's type, which selects the criteria variant

    Raises:
        ValidationError: criteria do not fit the segment type
    """
    model = _CRITERIA_MODELS[coerce_segment_type(segment_type)]

    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)
    if raw is None or raw == "":
        raw = {}

    try:
        if isinstance(raw, (str, bytes)):
            return model.model_validate_json(raw)
        return model.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc, "Invalid segment criteria")


def dump_criteria(criteria: SegmentCriteria) -> str:
    """Serialize criteria to the JSON text that is persisted."""
    return criteria.model_dump_json(by_alias=True, exclude_none=True)


# ============================================
# Requests
# ============================================


class SegmentCreate(BaseModel):
    """Schema for creating a segment."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    segment_type: SegmentType
    criteria: Any = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class SegmentUpdate(BaseModel):
    """Schema for updating a segment."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    criteria: Any = None


# ============================================
# Responses
# ============================================


class SegmentAnalysisResponse(BaseModel):
    """Summary statistics for a segment."""
    segment_id: str
    total_members: int
    avg_lifetime_value: float
    total_lifetime_value: float
    avg_churn_risk: float
    avg_engagement_score: float
    avg_purchase_frequency: float
    avg_recency: int
    avg_ticket_count: float
    conversion_rate: float
    retention_rate: float
    last_calculated: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerSummary(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    company: Optional[str] = None
    total_purchases: float = 0
    purchase_count: int = 0
    last_purchase: Optional[datetime] = None

    class Config:
        from_attributes = True


class SegmentMemberResponse(BaseModel):
    customer_id: str
    added_at: Optional[datetime] = None
    customer: Optional[CustomerSummary] = None

    class Config:
        from_attributes = True


class SegmentResponse(BaseModel):
    """Segment response schema."""
    id: str
    owner_id: str
    name: str
    description: Optional[str] = None
    criteria: dict[str, Any] = Field(default_factory=dict)
    segment_type: SegmentType
    member_count: int = 0
    is_auto: bool = False
    is_active: bool = True
    last_updated: Optional[datetime] = None
    created_at: Optional[datetime] = None
    analysis: Optional[SegmentAnalysisResponse] = None

    class Config:
        from_attributes = True

    @field_validator("criteria", mode="before")
    @classmethod
    def load_criteria(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v) if v else {}
        return v


class SegmentDetailResponse(SegmentResponse):
    """Segment with its members."""
    members: list[SegmentMemberResponse] = Field(default_factory=list)


class SegmentListResponse(BaseModel):
    items: list[SegmentResponse]
    total: int


class SegmentMembersPage(BaseModel):
    """Paginated segment members."""
    items: list[SegmentMemberResponse]
    total: int
    page: int
    page_size: int
    segment_id: str


class RulePreviewResponse(BaseModel):
    """Customers matching rule criteria, without saving a segment."""
    total_matches: int
    customer_ids: list[str]
    execution_time_ms: Optional[float] = None


class FieldDefinitionResponse(BaseModel):
    """Available field for segment rules."""
    name: str
    display_name: str
    data_type: str
    description: str = ""


class OperatorDefinitionResponse(BaseModel):
    """Available operator for segment rules."""
    name: str
    display: str
    types: list[str]
