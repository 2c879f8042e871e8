"""
Segment Analytics Calculator

Summary statistics over a segment's current members:

- lifetime value: mean and sum of total purchases
- purchase frequency: mean purchase count
- recency: floor of the mean days since last purchase (999 when never purchased)
- churn risk: min(100, avg_recency / 90 * 100)
- engagement: clamp(avg_purchase_frequency * 10 - avg_recency / 3, 0, 100)
- ticket count: mean tickets per member
- retention rate: % of members who purchased within the last 90 days
- conversion rate: % of members with at least one purchase
"""

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.exceptions import NotFoundError
from app.models.customer import Customer
from app.models.segment import Segment, SegmentAnalysis, SegmentMember
from app.utils.dates import days_since, fractional_days_since, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SegmentMetrics:
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

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_metrics(customers: Sequence[Customer], now: Optional[datetime] = None) -> Optional[SegmentMetrics]:
    """
    Aggregate member statistics. Customers must have ``tickets`` loaded.

    Returns None for an empty member list.
    """
    total_members = len(customers)
    if total_members == 0:
        return None

    now = now or utc_now()
    sentinel = settings.SEGMENT_RECENCY_SENTINEL_DAYS
    retention_window = settings.SEGMENT_RETENTION_WINDOW_DAYS
    churn_horizon = settings.SEGMENT_CHURN_HORIZON_DAYS

    total_lifetime_value = sum(float(c.total_purchases or 0) for c in customers)
    avg_purchase_frequency = sum(c.purchase_count or 0 for c in customers) / total_members

    recencies = [days_since(c.last_purchase, now, sentinel) for c in customers]
    avg_recency = math.floor(sum(recencies) / total_members)

    # Higher recency means higher churn risk
    avg_churn_risk = min(100.0, (avg_recency / churn_horizon) * 100)
    avg_engagement_score = max(0.0, min(100.0, avg_purchase_frequency * 10 - avg_recency / 3))

    avg_ticket_count = sum(len(c.tickets) for c in customers) / total_members

    retained = sum(
        1 for c in customers
        if c.last_purchase is not None and fractional_days_since(c.last_purchase, now) <= retention_window
    )
    converted = sum(1 for c in customers if (c.purchase_count or 0) > 0)

    return SegmentMetrics(
        total_members=total_members,
        avg_lifetime_value=total_lifetime_value / total_members,
        total_lifetime_value=total_lifetime_value,
        avg_churn_risk=avg_churn_risk,
        avg_engagement_score=avg_engagement_score,
        avg_purchase_frequency=avg_purchase_frequency,
        avg_recency=avg_recency,
        avg_ticket_count=avg_ticket_count,
        conversion_rate=(converted / total_members) * 100,
        retention_rate=(retained / total_members) * 100,
    )


class SegmentAnalyticsCalculator:
    """Recomputes and upserts the analysis row of a segment."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_member_customers(self, segment_id: str) -> list:
        result = await self.db.execute(
            select(Customer)
            .join(SegmentMember, SegmentMember.customer_id == Customer.id)
            .where(SegmentMember.segment_id == segment_id)
            .options(selectinload(Customer.tickets))
            .order_by(Customer.created_at, Customer.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def calculate(
        self,
        segment_id: str,
        owner_id: str,
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> Optional[SegmentAnalysis]:
        """
        Recompute analytics for a segment.

        Args:
            segment_id: Segment to analyze
            owner_id: Owner the segment must belong to
            now: Reference time (defaults to the current UTC time)
            commit: Commit when done; False when running inside a caller's unit of work

        Returns:
            The upserted SegmentAnalysis, or None when the segment has no members
            (any previous analysis row is removed)

        Raises:
            NotFoundError: segment does not exist for this owner
        """
        result = await self.db.execute(
            select(Segment.id).where(Segment.id == segment_id, Segment.owner_id == owner_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Segment", segment_id)

        now = now or utc_now()
        customers = await self.load_member_customers(segment_id)
        metrics = calculate_metrics(customers, now)

        if metrics is None:
            await self.db.execute(delete(SegmentAnalysis).where(SegmentAnalysis.segment_id == segment_id))
            if commit:
                await self.db.commit()
            logger.debug(f"Segment {segment_id} has no members, analytics cleared")
            return None

        existing = await self.db.execute(
            select(SegmentAnalysis).where(SegmentAnalysis.segment_id == segment_id)
        )
        analysis = existing.scalar_one_or_none()
        if analysis is None:
            analysis = SegmentAnalysis(segment_id=segment_id)
            self.db.add(analysis)

        for key, value in metrics.as_dict().items():
            setattr(analysis, key, value)
        analysis.last_calculated = now

        await self.db.flush()
        if commit:
            await self.db.commit()
            await self.db.refresh(analysis)

        logger.info(
            f"Calculated analytics for segment {segment_id}: {metrics.total_members} members, "
            f"retention {metrics.retention_rate:.1f}%, conversion {metrics.conversion_rate:.1f}%"
        )
        return analysis
