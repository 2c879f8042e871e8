"""Tests for the membership manager's unit of work and per-segment locking."""

import asyncio

import pytest
from sqlalchemy import select

from app.models.segment import Segment, SegmentMember
from app.services.segmentation.membership import SegmentLockRegistry, SegmentMembershipManager
from tests.factories import CustomerFactory, HighValueCustomerFactory

HIGH_VALUE_RULES = {"rules": [{"field": "totalPurchases", "operator": "gte", "value": 1000}]}


async def rule_segment(test_db, owner_id) -> Segment:
    segment = Segment(
        owner_id=owner_id,
        name="High value",
        segment_type="rule-based",
        is_auto=True,
        criteria='{"rules":[{"field":"totalPurchases","operator":"gte","value":1000}],"conditions":"AND"}',
    )
    test_db.add(segment)
    await test_db.commit()
    return segment


class TestSegmentLockRegistry:

    def test_same_lock_per_segment(self):
        registry = SegmentLockRegistry()

        lock = registry.lock_for("a")

        assert registry.lock_for("a") is lock
        assert registry.lock_for("b") is not lock


class TestMembershipManager:

    @pytest.mark.asyncio
    async def test_refresh_uses_stored_criteria(self, test_db, owner_id):
        test_db.add_all([HighValueCustomerFactory(owner_id=owner_id), CustomerFactory(owner_id=owner_id)])
        segment = await rule_segment(test_db, owner_id)

        result = await SegmentMembershipManager(test_db).refresh(segment.id, owner_id)

        assert result.total_members == 1
        assert result.customers_added == 1
        assert result.selection is None

    @pytest.mark.asyncio
    async def test_failed_refresh_rolls_back(self, test_db, owner_id, monkeypatch):
        """Members deleted before a failure are restored by the rollback."""
        test_db.add_all([HighValueCustomerFactory(owner_id=owner_id) for _ in range(2)])
        segment = await rule_segment(test_db, owner_id)
        manager = SegmentMembershipManager(test_db)
        await manager.refresh(segment.id, owner_id)

        test_db.add(HighValueCustomerFactory(owner_id=owner_id))
        await test_db.commit()

        async def broken_calculate(*args, **kwargs):
            raise RuntimeError("analytics store unavailable")

        monkeypatch.setattr(manager.analytics, "calculate", broken_calculate)

        with pytest.raises(RuntimeError):
            await manager.refresh(segment.id, owner_id)

        result = await test_db.execute(
            select(SegmentMember.customer_id).where(SegmentMember.segment_id == segment.id)
        )
        assert len(result.all()) == 2
        stored = await test_db.execute(select(Segment.member_count).where(Segment.id == segment.id))
        assert stored.scalar() == 2

    @pytest.mark.asyncio
    async def test_refresh_waits_for_segment_lock(self, test_db, owner_id):
        test_db.add(HighValueCustomerFactory(owner_id=owner_id))
        segment = await rule_segment(test_db, owner_id)
        registry = SegmentLockRegistry()
        manager = SegmentMembershipManager(test_db, locks=registry)

        lock = registry.lock_for(segment.id)
        await lock.acquire()
        task = asyncio.create_task(manager.refresh(segment.id, owner_id))
        await asyncio.sleep(0.05)

        assert not task.done()

        lock.release()
        result = await task
        assert result.total_members == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_collapsed(self, test_db, owner_id):
        customer = CustomerFactory(owner_id=owner_id)
        segment = Segment(owner_id=owner_id, name="Manual", segment_type="manual")
        test_db.add_all([customer, segment])
        await test_db.commit()

        count = await SegmentMembershipManager(test_db).add_customers(
            segment.id, [customer.id, customer.id], owner_id
        )

        assert count == 1
