"""
Segmentation Service

Entry point for the segmentation engine. Owns segment CRUD and delegates
membership computation to SegmentMembershipManager and statistics to
SegmentAnalyticsCalculator.

Every operation is scoped to an owner: a segment that exists but belongs to
another owner is reported as not found.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import lazyload, selectinload
from sqlalchemy.orm.attributes import set_committed_value

from app.exceptions import NotFoundError, ValidationError
from app.models.segment import Segment, SegmentAnalysis, SegmentMember, SEGMENT_TYPE_MANUAL
from app.schemas.segment import (
    FieldDefinitionResponse,
    OperatorDefinitionResponse,
    RuleCriteria,
    RulePreviewResponse,
    SegmentCreate,
    SegmentMemberResponse,
    SegmentMembersPage,
    SegmentType,
    SegmentUpdate,
    dump_criteria,
    parse_criteria,
)
from app.services.segmentation.analytics import SegmentAnalyticsCalculator
from app.services.segmentation.membership import (
    MembershipRefreshResult,
    SegmentLockRegistry,
    SegmentMembershipManager,
)
from app.services.segmentation.rules import RuleEvaluator
from app.utils.dates import utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def predefined_segment_definitions(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """The fixed rule-based segments created for every new owner."""
    now = now or utc_now()

    def days_ago(days: int) -> str:
        return (now - timedelta(days=days)).isoformat()

    return [
        {
            "name": "High-Value Customers",
            "description": "Customers with high lifetime value",
            "criteria": {
                "rules": [{"field": "totalPurchases", "operator": "gte", "value": 1000}],
                "conditions": "AND",
            },
        },
        {
            "name": "At-Risk Customers",
            "description": "Customers who haven't purchased in 90+ days",
            "criteria": {
                "rules": [
                    {"field": "lastPurchase", "operator": "lte", "value": days_ago(90)},
                    {"field": "purchaseCount", "operator": "gt", "value": 0},
                ],
                "conditions": "AND",
            },
        },
        {
            "name": "New Customers",
            "description": "Customers created in the last 30 days",
            "criteria": {
                "rules": [{"field": "createdAt", "operator": "gte", "value": days_ago(30)}],
                "conditions": "AND",
            },
        },
        {
            "name": "Active Customers",
            "description": "Customers with recent purchases",
            "criteria": {
                "rules": [{"field": "lastPurchase", "operator": "gte", "value": days_ago(30)}],
                "conditions": "AND",
            },
        },
        {
            "name": "Inactive Customers",
            "description": "Customers with no purchases in 180+ days",
            "criteria": {
                "rules": [{"field": "lastPurchase", "operator": "lte", "value": days_ago(180)}],
                "conditions": "AND",
            },
        },
    ]


class SegmentationService:
    """
    Customer segmentation: manual, rule-based and ML clustering segments.

    Usage:
        service = SegmentationService(db)
        segment = await service.create_segment(
            owner_id,
            "Big spenders",
            {"rules": [{"field": "totalPurchases", "operator": "gte", "value": 1000}]},
            "rule-based",
        )
    """

    def __init__(self, db: AsyncSession, locks: Optional[SegmentLockRegistry] = None):
        self.db = db
        self.rules = RuleEvaluator(db)
        self.membership = SegmentMembershipManager(db, locks=locks, rule_evaluator=self.rules)
        self.analytics = SegmentAnalyticsCalculator(db)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_owned_segment(self, segment_id: str, owner_id: str) -> Segment:
        result = await self.db.execute(
            select(Segment)
            .where(Segment.id == segment_id, Segment.owner_id == owner_id)
            .options(lazyload(Segment.members), lazyload(Segment.analysis))
        )
        segment = result.scalar_one_or_none()
        if not segment:
            raise NotFoundError("Segment", segment_id)
        return segment

    def _validate_criteria(self, criteria: Any, segment_type: SegmentType):
        parsed = parse_criteria(criteria, segment_type)
        if isinstance(parsed, RuleCriteria):
            self.rules.validate(parsed)
        return parsed

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_segment(
        self,
        owner_id: str,
        name: str,
        criteria: Any,
        segment_type: Union[str, SegmentType],
        description: Optional[str] = None,
    ) -> Segment:
        """
        Create a segment; rule-based and clustering segments are populated immediately.

        Raises:
            ValidationError: invalid name, type or criteria (nothing is written)
        """
        try:
            data = SegmentCreate(
                name=name, description=description, segment_type=segment_type, criteria=criteria
            )
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc, "Invalid segment")

        parsed = self._validate_criteria(data.criteria, data.segment_type)

        segment = Segment(
            owner_id=owner_id,
            name=data.name,
            description=data.description,
            criteria=dump_criteria(parsed),
            segment_type=data.segment_type.value,
            is_auto=data.segment_type != SegmentType.MANUAL,
            member_count=0,
            is_active=True,
        )
        self.db.add(segment)

        if segment.is_auto:
            # Insert and initial population commit together; a failed refresh leaves no segment
            try:
                await self.db.flush()
            except Exception:
                await self.db.rollback()
                raise
            await self.membership.refresh(segment.id, owner_id, parsed)
        else:
            try:
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Created {segment.segment_type} segment {segment.id} for owner {owner_id}")

        return await self.get_segment_by_id(segment.id, owner_id)

    async def get_segments(self, owner_id: str, include_analysis: bool = False) -> List[Segment]:
        """Active segments of an owner, newest first."""
        query = (
            select(Segment)
            .where(Segment.owner_id == owner_id, Segment.is_active == True)  # noqa: E712
            .options(lazyload(Segment.members), lazyload(Segment.analysis))
            .order_by(Segment.created_at.desc(), Segment.id)
        )
        result = await self.db.execute(query)
        segments = list(result.scalars().all())

        if include_analysis and segments:
            rows = await self.db.execute(
                select(SegmentAnalysis).where(SegmentAnalysis.segment_id.in_([s.id for s in segments]))
            )
            by_segment = {analysis.segment_id: analysis for analysis in rows.scalars().all()}
            for segment in segments:
                set_committed_value(segment, "analysis", by_segment.get(segment.id))

        return segments

    async def get_segment_by_id(self, segment_id: str, owner_id: str) -> Optional[Segment]:
        """Segment with its members (and their customers) and analysis, or None."""
        result = await self.db.execute(
            select(Segment)
            .where(Segment.id == segment_id, Segment.owner_id == owner_id)
            .options(
                selectinload(Segment.members).selectinload(SegmentMember.customer),
                selectinload(Segment.analysis),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_segment(
        self,
        segment_id: str,
        owner_id: str,
        name: Optional[str] = None,
        criteria: Any = None,
        description: Optional[str] = None,
    ) -> Segment:
        """
        Update name, description or criteria.

        New criteria on a rule-based or clustering segment trigger a membership refresh.
        """
        try:
            data = SegmentUpdate(name=name, description=description, criteria=criteria)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc, "Invalid segment update")

        segment = await self._get_owned_segment(segment_id, owner_id)
        segment_type = SegmentType(segment.segment_type)

        parsed = None
        if data.criteria is not None:
            parsed = self._validate_criteria(data.criteria, segment_type)

        if data.name is not None:
            stripped = data.name.strip()
            if not stripped:
                raise ValidationError(
                    "name must not be blank",
                    errors=[{"field": "name", "message": "must not be blank", "type": "value_error"}],
                )
            segment.name = stripped
        if data.description is not None:
            segment.description = data.description
        if parsed is not None:
            segment.criteria = dump_criteria(parsed)
        segment.is_auto = segment_type != SegmentType.MANUAL

        refresh = parsed is not None and segment_type != SegmentType.MANUAL
        try:
            if refresh:
                # New criteria commit only together with the members they produce
                await self.db.flush()
            else:
                await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if refresh:
            await self.membership.refresh(segment_id, owner_id, parsed, segment_type)

        return await self.get_segment_by_id(segment_id, owner_id)

    async def delete_segment(self, segment_id: str, owner_id: str, soft: bool = False) -> None:
        """
        Delete a segment with its members and analysis.

        With ``soft=True`` the segment is only deactivated and stays retrievable by id.
        """
        segment = await self._get_owned_segment(segment_id, owner_id)

        async with self.membership.locks.lock_for(segment_id):
            try:
                if soft:
                    segment.is_active = False
                    segment.last_updated = utc_now()
                else:
                    await self.db.execute(delete(SegmentMember).where(SegmentMember.segment_id == segment_id))
                    await self.db.execute(delete(SegmentAnalysis).where(SegmentAnalysis.segment_id == segment_id))
                    await self.db.execute(delete(Segment).where(Segment.id == segment_id))
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"{'Deactivated' if soft else 'Deleted'} segment {segment_id}")

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    async def refresh_segment(
        self,
        segment_id: str,
        owner_id: str,
        criteria: Any = None,
        segment_type: Optional[Union[str, SegmentType]] = None,
    ) -> MembershipRefreshResult:
        """Refresh membership and return the detailed result."""
        return await self.membership.refresh(segment_id, owner_id, criteria, segment_type)

    async def update_segment_membership(
        self,
        segment_id: str,
        owner_id: str,
        criteria: Any = None,
        segment_type: Optional[Union[str, SegmentType]] = None,
    ) -> int:
        """
        Recompute membership of a rule-based or clustering segment.

        ``criteria`` defaults to the stored criteria. Returns the member count.
        """
        result = await self.refresh_segment(segment_id, owner_id, criteria, segment_type)
        return result.total_members

    async def add_customers_to_segment(self, segment_id: str, customer_ids: List[str], owner_id: str) -> int:
        """Add customers to a manual segment. Returns the member count."""
        return await self.membership.add_customers(segment_id, customer_ids, owner_id)

    async def remove_customers_from_segment(self, segment_id: str, customer_ids: List[str], owner_id: str) -> int:
        """Remove customers from a manual segment. Returns the member count."""
        return await self.membership.remove_customers(segment_id, customer_ids, owner_id)

    async def get_segment_members(
        self, segment_id: str, owner_id: str, page: int = 1, page_size: int = 50
    ) -> SegmentMembersPage:
        """Members with their customers, most recently added first."""
        if page < 1 or page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(
                f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}",
                errors=[{"field": "page_size", "message": "out of range", "type": "value_error"}],
            )

        await self._get_owned_segment(segment_id, owner_id)

        total_result = await self.db.execute(
            select(func.count(SegmentMember.id)).where(SegmentMember.segment_id == segment_id)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(SegmentMember)
            .where(SegmentMember.segment_id == segment_id)
            .options(selectinload(SegmentMember.customer))
            .order_by(SegmentMember.added_at.desc(), SegmentMember.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        members = result.scalars().all()

        return SegmentMembersPage(
            items=[SegmentMemberResponse.model_validate(m) for m in members],
            total=total,
            page=page,
            page_size=page_size,
            segment_id=segment_id,
        )

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    async def calculate_segment_analytics(self, segment_id: str, owner_id: str) -> Optional[SegmentAnalysis]:
        """Recompute and store analytics; None when the segment has no members."""
        try:
            return await self.analytics.calculate(segment_id, owner_id, commit=True)
        except Exception:
            await self.db.rollback()
            raise

    # =========================================================================
    # BULK
    # =========================================================================

    async def create_predefined_segments(self, owner_id: str, now: Optional[datetime] = None) -> List[Segment]:
        """Create the high-value, at-risk, new, active and inactive segments."""
        segments = []
        for definition in predefined_segment_definitions(now):
            segment = await self.create_segment(
                owner_id,
                definition["name"],
                definition["criteria"],
                SegmentType.RULE_BASED,
                definition["description"],
            )
            segments.append(segment)

        logger.info(f"Created {len(segments)} predefined segments for owner {owner_id}")
        return segments

    async def refresh_auto_segments(self, owner_id: str) -> int:
        """Refresh every active rule-based and clustering segment. Returns how many were refreshed."""
        result = await self.db.execute(
            select(Segment.id)
            .where(
                Segment.owner_id == owner_id,
                Segment.is_active == True,  # noqa: E712
                Segment.segment_type != SEGMENT_TYPE_MANUAL,
            )
            .order_by(Segment.created_at, Segment.id)
        )
        segment_ids = [row[0] for row in result.all()]

        for segment_id in segment_ids:
            await self.membership.refresh(segment_id, owner_id)

        logger.info(f"Refreshed {len(segment_ids)} auto segments for owner {owner_id}")
        return len(segment_ids)

    # =========================================================================
    # RULE BUILDER
    # =========================================================================

    async def preview_rules(self, owner_id: str, criteria: Any, limit: Optional[int] = None) -> RulePreviewResponse:
        """Evaluate rule criteria without saving a segment."""
        start_time = time.perf_counter()
        parsed = self._validate_criteria(criteria, SegmentType.RULE_BASED)
        customer_ids = await self.rules.evaluate(owner_id, parsed)

        return RulePreviewResponse(
            total_matches=len(customer_ids),
            customer_ids=customer_ids[:limit] if limit else customer_ids,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    async def estimate_segment_size(self, owner_id: str, criteria: Any) -> int:
        """Number of customers the rule criteria would match."""
        parsed = self._validate_criteria(criteria, SegmentType.RULE_BASED)
        subquery = self.rules.build_query(owner_id, parsed).order_by(None).subquery()
        result = await self.db.execute(select(func.count()).select_from(subquery))
        return result.scalar() or 0

    def get_available_fields(self) -> List[FieldDefinitionResponse]:
        return [FieldDefinitionResponse(**f) for f in self.rules.get_available_fields()]

    def get_available_operators(self, data_type: Optional[str] = None) -> List[OperatorDefinitionResponse]:
        return [OperatorDefinitionResponse(**op) for op in self.rules.get_available_operators(data_type)]
