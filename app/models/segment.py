"""
Segment Models

- Segment: named grouping of one owner's customers (manual, rule-based or
  ML clustering), with its criteria stored as JSON text
- SegmentMember: (segment, customer) membership, unique per pair
- SegmentAnalysis: one-to-one summary statistics, recomputed on every
  membership change
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.customer import generate_id
from app.utils.dates import utc_now

SEGMENT_TYPE_MANUAL = "manual"


class Segment(Base):
    """
    Customer segment definition.

    Supports:
    - Manual segments (members added and removed explicitly)
    - Rule-based segments (field/operator/value predicates, AND/OR)
    - ML clustering segments (k-means over RFM/behavioral/engagement features)
    """
    __tablename__ = "customer_segments"

    id = Column(String(36), primary_key=True, default=generate_id)
    owner_id = Column(String(36), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)

    # Serialized criteria, e.g.
    # {"rules": [{"field": "totalPurchases", "operator": "gte", "value": 1000}], "conditions": "AND"}
    # {"mlConfig": {"type": "rfm", "clusters": 3, "features": []}}
    criteria = Column(Text, nullable=False, default="{}")

    segment_type = Column(String(20), nullable=False, default=SEGMENT_TYPE_MANUAL)

    # Derived
    member_count = Column(Integer, default=0, nullable=False)
    is_auto = Column(Boolean, default=False, nullable=False)  # segment_type != manual

    is_active = Column(Boolean, default=True, nullable=False)
    last_updated = Column(DateTime, default=utc_now)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    # Relationships
    members = relationship(
        "SegmentMember", back_populates="segment", cascade="all, delete-orphan", passive_deletes=True
    )
    analysis = relationship(
        "SegmentAnalysis", back_populates="segment", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_customer_segments_owner_active", "owner_id", "is_active"),
    )

    def __repr__(self):
        return f"<Segment id={self.id} name='{self.name}' type={self.segment_type} count={self.member_count}>"


class SegmentMember(Base):
    """Membership of a customer in a segment."""
    __tablename__ = "segment_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    segment_id = Column(String(36), ForeignKey("customer_segments.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    added_at = Column(DateTime, default=utc_now, nullable=False)

    segment = relationship("Segment", back_populates="members")
    customer = relationship("Customer")

    __table_args__ = (
        UniqueConstraint("segment_id", "customer_id", name="uq_segment_members_segment_customer"),
    )

    def __repr__(self):
        return f"<SegmentMember segment_id={self.segment_id} customer_id={self.customer_id}>"


class SegmentAnalysis(Base):
    """Point-in-time summary statistics for a segment's current members."""
    __tablename__ = "segment_analyses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    segment_id = Column(
        String(36), ForeignKey("customer_segments.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )

    total_members = Column(Integer, nullable=False, default=0)

    # Financial
    avg_lifetime_value = Column(Float, default=0)
    total_lifetime_value = Column(Float, default=0)

    # Scores (0-100)
    avg_churn_risk = Column(Float, default=0)
    avg_engagement_score = Column(Float, default=0)

    # Behavior
    avg_purchase_frequency = Column(Float, default=0)
    avg_recency = Column(Integer, default=0)  # days
    avg_ticket_count = Column(Float, default=0)

    # Rates (%)
    conversion_rate = Column(Float, default=0)
    retention_rate = Column(Float, default=0)

    last_calculated = Column(DateTime, default=utc_now)

    segment = relationship("Segment", back_populates="analysis")

    def __repr__(self):
        return f"<SegmentAnalysis segment_id={self.segment_id} members={self.total_members}>"
