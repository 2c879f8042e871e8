"""
Segment Membership Manager

Replaces a segment's members in one unit of work:

1. Lock the segment row (SELECT ... FOR UPDATE) and take the in-process lock
   for the segment id
2. Compute the new member ids (rule evaluation, or features -> normalize ->
   k-means -> best cluster)
3. Delete existing members and insert the new set
4. Update member count / last updated and recompute analytics
5. Commit once; roll back and re-raise on any error

Manual segments never go through refresh; their members are added and removed
individually.
"""

import asyncio
import logging
import time
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set, Tuple, Union

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import InvalidOperationError, NotFoundError, ValidationError
from app.models.customer import Customer
from app.models.segment import Segment, SegmentMember, SEGMENT_TYPE_MANUAL
from app.schemas.segment import (
    MLClusteringCriteria,
    RuleCriteria,
    SegmentCriteria,
    SegmentType,
    coerce_segment_type,
    parse_criteria,
)
from app.services.segmentation.analytics import SegmentAnalyticsCalculator
from app.services.segmentation.clustering import KMeansClusterer
from app.services.segmentation.features import FeatureExtractor, feature_matrix
from app.services.segmentation.normalizer import normalize_features
from app.services.segmentation.rules import RuleEvaluator
from app.services.segmentation.selector import ClusterSelection, select_best_cluster
from app.utils.dates import utc_now

logger = logging.getLogger(__name__)


class SegmentLockRegistry:
    """One asyncio.Lock per segment id, released once no caller holds a reference."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, segment_id: str) -> asyncio.Lock:
        lock = self._locks.get(segment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[segment_id] = lock
        return lock


segment_locks = SegmentLockRegistry()


@dataclass
class MembershipRefreshResult:
    """Result of replacing a segment's membership."""

    segment_id: str
    total_members: int
    customers_added: int
    customers_removed: int
    execution_time_ms: float = 0
    selection: Optional[ClusterSelection] = None


def _unique(ids: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    ordered = []
    for customer_id in ids:
        if customer_id not in seen:
            seen.add(customer_id)
            ordered.append(customer_id)
    return ordered


class SegmentMembershipManager:
    """Computes and persists segment membership."""

    def __init__(
        self,
        db: AsyncSession,
        locks: Optional[SegmentLockRegistry] = None,
        rule_evaluator: Optional[RuleEvaluator] = None,
        clusterer: Optional[KMeansClusterer] = None,
    ):
        self.db = db
        self.locks = locks or segment_locks
        self.rules = rule_evaluator or RuleEvaluator(db)
        self.clusterer = clusterer or KMeansClusterer()
        self.features = FeatureExtractor(db)
        self.analytics = SegmentAnalyticsCalculator(db)

    # =========================================================================
    # MEMBER COMPUTATION
    # =========================================================================

    async def compute_members(
        self,
        owner_id: str,
        criteria: SegmentCriteria,
        now: Optional[datetime] = None,
    ) -> Tuple[List[str], Optional[ClusterSelection]]:
        """Member ids for rule or clustering criteria (no writes)."""
        if isinstance(criteria, RuleCriteria):
            return _unique(await self.rules.evaluate(owner_id, criteria)), None
        if isinstance(criteria, MLClusteringCriteria):
            selection = await self.cluster(owner_id, criteria, now)
            return _unique(selection.member_ids), selection
        raise InvalidOperationError("Manual segments have no computed membership")

    async def cluster(
        self,
        owner_id: str,
        criteria: MLClusteringCriteria,
        now: Optional[datetime] = None,
    ) -> ClusterSelection:
        config = criteria.ml_config
        rows = await self.features.extract(owner_id, config.type, now)
        if not rows:
            return ClusterSelection(member_ids=[], selected_cluster=None)

        matrix = normalize_features(feature_matrix(rows, config.feature_columns))
        result = self.clusterer.fit(matrix, config.k)
        return select_best_cluster(
            result.labels, rows, config.type, centroids=result.centroids, n_clusters=result.n_clusters
        )

    # =========================================================================
    # REFRESH
    # =========================================================================

    async def _lock_segment(self, segment_id: str, owner_id: str) -> Segment:
        result = await self.db.execute(
            select(Segment)
            .where(Segment.id == segment_id, Segment.owner_id == owner_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        segment = result.scalar_one_or_none()
        if not segment:
            raise NotFoundError("Segment", segment_id)
        return segment

    async def _current_member_ids(self, segment_id: str) -> Set[str]:
        result = await self.db.execute(
            select(SegmentMember.customer_id).where(SegmentMember.segment_id == segment_id)
        )
        return set(row[0] for row in result.all())

    async def _count_members(self, segment_id: str) -> int:
        result = await self.db.execute(
            select(func.count(SegmentMember.id)).where(SegmentMember.segment_id == segment_id)
        )
        return result.scalar() or 0

    async def refresh(
        self,
        segment_id: str,
        owner_id: str,
        criteria=None,
        segment_type: Optional[Union[str, SegmentType]] = None,
        now: Optional[datetime] = None,
    ) -> MembershipRefreshResult:
        """
        Recompute and replace the members of a rule-based or clustering segment.

        Args:
            segment_id: Segment to refresh
            owner_id: Owner the segment must belong to
            criteria: Criteria to evaluate; defaults to the segment's stored criteria
            segment_type: Expected type; must match the stored type when given
            now: Reference time for date features and analytics

        Raises:
            NotFoundError: segment does not exist for this owner
            InvalidOperationError: manual segment, or a type other than the stored one
            ValidationError: criteria do not fit the segment type
        """
        async with self.locks.lock_for(segment_id):
            start_time = time.perf_counter()
            now = now or utc_now()
            try:
                segment = await self._lock_segment(segment_id, owner_id)
                stored_type = coerce_segment_type(segment.segment_type)

                if segment_type is not None and coerce_segment_type(segment_type) != stored_type:
                    raise InvalidOperationError(
                        f"Segment {segment_id} is '{stored_type.value}', not '{SegmentType(segment_type).value}'"
                    )
                if stored_type == SegmentType.MANUAL:
                    raise InvalidOperationError(
                        "Manual segments are not refreshed; add or remove customers instead"
                    )

                parsed = parse_criteria(segment.criteria if criteria is None else criteria, stored_type)
                member_ids, selection = await self.compute_members(owner_id, parsed, now)

                previous = await self._current_member_ids(segment_id)
                new_members = set(member_ids)

                await self.db.execute(delete(SegmentMember).where(SegmentMember.segment_id == segment_id))
                self.db.add_all(
                    [SegmentMember(segment_id=segment_id, customer_id=cid, added_at=now) for cid in member_ids]
                )

                segment.member_count = len(member_ids)
                segment.last_updated = now
                await self.db.flush()

                await self.analytics.calculate(segment_id, owner_id, now=now, commit=False)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

            result = MembershipRefreshResult(
                segment_id=segment_id,
                total_members=len(member_ids),
                customers_added=len(new_members - previous),
                customers_removed=len(previous - new_members),
                execution_time_ms=(time.perf_counter() - start_time) * 1000,
                selection=selection,
            )

        logger.info(
            f"Refreshed segment {segment_id}: {result.total_members} members "
            f"(+{result.customers_added}/-{result.customers_removed}) in {result.execution_time_ms:.1f}ms"
        )
        return result

    # =========================================================================
    # MANUAL MEMBERSHIP
    # =========================================================================

    async def _manual_segment(self, segment_id: str, owner_id: str, action: str) -> Segment:
        segment = await self._lock_segment(segment_id, owner_id)
        if segment.segment_type != SEGMENT_TYPE_MANUAL:
            raise InvalidOperationError(f"Can only manually {action} customers for manual segments")
        return segment

    @staticmethod
    def _require_ids(customer_ids: Sequence[str]) -> List[str]:
        ids = _unique(customer_ids or [])
        if not ids:
            raise ValidationError(
                "customerIds must contain at least one customer id",
                errors=[{"field": "customerIds", "message": "must not be empty", "type": "missing"}],
            )
        return ids

    async def add_customers(
        self, segment_id: str, customer_ids: Sequence[str], owner_id: str, now: Optional[datetime] = None
    ) -> int:
        """Add customers to a manual segment (existing members are kept). Returns the member count."""
        ids = self._require_ids(customer_ids)

        async with self.locks.lock_for(segment_id):
            now = now or utc_now()
            try:
                segment = await self._manual_segment(segment_id, owner_id, "add")

                result = await self.db.execute(
                    select(Customer.id).where(
                        Customer.id.in_(ids),
                        Customer.owner_id == owner_id,
                        Customer.is_active == True,  # noqa: E712
                    )
                )
                found = set(row[0] for row in result.all())
                missing = [cid for cid in ids if cid not in found]
                if missing:
                    raise ValidationError(
                        f"{len(missing)} customer id(s) are not active customers of this owner",
                        errors=[
                            {"field": "customerIds", "message": f"unknown customer '{cid}'", "type": "value_error"}
                            for cid in missing
                        ],
                    )

                existing = await self._current_member_ids(segment_id)
                self.db.add_all(
                    [
                        SegmentMember(segment_id=segment_id, customer_id=cid, added_at=now)
                        for cid in ids
                        if cid not in existing
                    ]
                )
                await self.db.flush()

                count = await self._count_members(segment_id)
                segment.member_count = count
                segment.last_updated = now
                await self.analytics.calculate(segment_id, owner_id, now=now, commit=False)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Added customers to manual segment {segment_id}: {count} members")
        return count

    async def remove_customers(
        self, segment_id: str, customer_ids: Sequence[str], owner_id: str, now: Optional[datetime] = None
    ) -> int:
        """Remove customers from a manual segment. Returns the member count."""
        ids = self._require_ids(customer_ids)

        async with self.locks.lock_for(segment_id):
            now = now or utc_now()
            try:
                segment = await self._manual_segment(segment_id, owner_id, "remove")

                await self.db.execute(
                    delete(SegmentMember).where(
                        SegmentMember.segment_id == segment_id,
                        SegmentMember.customer_id.in_(ids),
                    )
                )

                count = await self._count_members(segment_id)
                segment.member_count = count
                segment.last_updated = now
                await self.db.flush()
                await self.analytics.calculate(segment_id, owner_id, now=now, commit=False)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Removed customers from manual segment {segment_id}: {count} members")
        return count
