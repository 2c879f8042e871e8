#!/usr/bin/env python3
"""
Seed Script for Customer Segments

Creates demo data for one owner and segments over it:
- Customers with a spread of purchase histories (a handful of big spenders,
  regulars, lapsed and never-purchased customers)
- Support tickets and invoices for those customers
- The predefined rule-based segments plus one RFM clustering segment

Run with: python scripts/seed_segments.py --owner-id demo-owner
"""

import argparse
import asyncio
import random
from datetime import timedelta
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_engine, get_session_maker, init_db
from app.models.customer import Customer
from app.models.invoice import Invoice
from app.models.segment import Segment, SegmentMember
from app.models.ticket import SupportTicket
from app.services.segmentation import SegmentationService
from app.utils.dates import utc_now


# ============================================================
# DEMO DATA
# ============================================================

FIRST_NAMES = ["Ava", "Liam", "Mia", "Noah", "Zoe", "Eli", "Ivy", "Owen", "Ruby", "Leo", "Nora", "Jack"]
LAST_NAMES = ["Garcia", "Nguyen", "Patel", "Smith", "Okafor", "Kim", "Rossi", "Silva", "Moreau", "Berg"]
COMPANIES = ["Acme Corp", "Lone Star Supply", "Hill Country Goods", "Bluebonnet LLC", None, None]
CITIES = [("Austin", "US"), ("Dallas", "US"), ("Houston", "US"), ("Toronto", "CA"), ("London", "GB")]

# (label, count, purchase total range, purchase count range, days since last purchase range)
CUSTOMER_PROFILES = [
    ("big_spender", 5, (5000, 15000), (20, 40), (1, 20)),
    ("regular", 15, (200, 900), (3, 12), (5, 60)),
    ("lapsed", 10, (100, 1200), (1, 6), (100, 400)),
    ("prospect", 6, (0, 0), (0, 0), None),
]

TICKET_SUBJECTS = ["Late delivery", "Billing question", "Damaged item", "Account access", "Refund request"]
TICKET_STATUSES = ["open", "in_progress", "resolved", "closed"]
INVOICE_STATUSES = ["draft", "sent", "paid", "overdue"]


async def clear_owner_data(session: AsyncSession, owner_id: str):
    """Clear existing demo data for the owner."""
    print("Clearing existing data...")

    segment_ids = select(Segment.id).where(Segment.owner_id == owner_id)
    await session.execute(delete(SegmentMember).where(SegmentMember.segment_id.in_(segment_ids)))
    await session.execute(delete(Segment).where(Segment.owner_id == owner_id))
    await session.execute(delete(SupportTicket).where(SupportTicket.owner_id == owner_id))
    await session.execute(delete(Invoice).where(Invoice.owner_id == owner_id))
    await session.execute(delete(Customer).where(Customer.owner_id == owner_id))
    await session.commit()

    print("  Data cleared.")


async def seed_customers(session: AsyncSession, owner_id: str, rng: random.Random) -> list[Customer]:
    """Create customers for each purchase profile."""
    print("\nCreating customers...")
    now = utc_now()
    customers = []

    for label, count, totals, counts, recency in CUSTOMER_PROFILES:
        for _ in range(count):
            first, last = rng.choice(FIRST_NAMES), rng.choice(LAST_NAMES)
            city, country = rng.choice(CITIES)
            purchase_count = rng.randint(*counts)
            customer = Customer(
                owner_id=owner_id,
                name=f"{first} {last}",
                email=f"{first.lower()}.{last.lower()}{rng.randint(1, 999)}@example.com",
                company=rng.choice(COMPANIES),
                city=city,
                country=country,
                total_purchases=round(rng.uniform(*totals), 2) if purchase_count else 0.0,
                total_quantity=float(purchase_count * rng.randint(1, 5)),
                purchase_count=purchase_count,
                last_purchase=now - timedelta(days=rng.randint(*recency)) if recency else None,
                created_at=now - timedelta(days=rng.randint(1, 720)),
                is_active=True,
            )
            session.add(customer)
            customers.append(customer)
        print(f"  {label}: {count} customers")

    await session.commit()
    return customers


async def seed_activity(session: AsyncSession, owner_id: str, customers: list[Customer], rng: random.Random) -> tuple[int, int]:
    """Create support tickets and invoices."""
    print("\nCreating tickets and invoices...")
    ticket_count = 0
    invoice_count = 0

    for customer in customers:
        for _ in range(rng.randint(0, 3)):
            session.add(SupportTicket(
                owner_id=owner_id,
                customer_id=customer.id,
                subject=rng.choice(TICKET_SUBJECTS),
                status=rng.choice(TICKET_STATUSES),
                priority=rng.choice(["low", "medium", "high"]),
            ))
            ticket_count += 1

        for _ in range(min(customer.purchase_count, rng.randint(0, 4))):
            invoice_count += 1
            session.add(Invoice(
                owner_id=owner_id,
                customer_id=customer.id,
                invoice_number=f"INV-{invoice_count:05d}",
                status=rng.choice(INVOICE_STATUSES),
                total=round(rng.uniform(50, 2000), 2),
            ))

    await session.commit()
    print(f"  {ticket_count} tickets, {invoice_count} invoices")
    return ticket_count, invoice_count


async def create_segments(session: AsyncSession, owner_id: str) -> list[Segment]:
    """Create the predefined segments and an RFM clustering segment."""
    print("\nCreating segments...")
    service = SegmentationService(session)

    segments = await service.create_predefined_segments(owner_id)
    segments.append(await service.create_segment(
        owner_id,
        "RFM Top Cluster",
        {"mlConfig": {"type": "rfm", "clusters": 3}},
        "ml-clustering",
        "Best RFM cluster (k=3)",
    ))

    for segment in segments:
        print(f"  Created segment: {segment.name} (type: {segment.segment_type}, members: {segment.member_count})")
    return segments


async def print_summary(session: AsyncSession, owner_id: str):
    """Print summary of seeded data."""
    print("\n" + "=" * 60)
    print("SEGMENT SEED SUMMARY")
    print("=" * 60)

    result = await session.execute(select(func.count(Customer.id)).where(Customer.owner_id == owner_id))
    print(f"Customers: {result.scalar()}")

    result = await session.execute(select(func.count(Segment.id)).where(Segment.owner_id == owner_id))
    print(f"Segments: {result.scalar()}")

    result = await session.execute(
        select(func.count(SegmentMember.id))
        .join(Segment, Segment.id == SegmentMember.segment_id)
        .where(Segment.owner_id == owner_id)
    )
    print(f"Memberships: {result.scalar()}")
    print("=" * 60)


async def main(owner_id: str, seed: int):
    print("=" * 60)
    print(f"Seeding segments for owner {owner_id}")
    print("=" * 60)

    await init_db()
    rng = random.Random(seed)

    try:
        async with get_session_maker()() as session:
            await clear_owner_data(session, owner_id)
            customers = await seed_customers(session, owner_id, rng)
            await seed_activity(session, owner_id, customers, rng)
            await create_segments(session, owner_id)
            await print_summary(session, owner_id)
    finally:
        await get_engine().dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo customers and segments")
    parser.add_argument("--owner-id", default="demo-owner", help="Owner to seed data for")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    args = parser.parse_args()

    asyncio.run(main(args.owner_id, args.seed))
