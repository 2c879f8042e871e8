"""
Feature extraction for clustering segments.

Each clustering type reads a fixed, ordered set of per-customer features
(see ``FEATURE_NAMES``):

- rfm:        recency_days, purchase_count, total_purchase_amount
- behavioral: purchase_count, average_purchase_value, open_ticket_count, total_quantity
- engagement: account_age_days, purchase_count, ticket_count, invoice_count, recency_days

Customers who never purchased get the recency sentinel (999 days).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.customer import Customer
from app.schemas.segment import ClusteringType, FEATURE_NAMES
from app.utils.dates import days_since, utc_now

logger = logging.getLogger(__name__)


@dataclass
class CustomerFeatures:
    """Raw (pre-normalization) features for one customer."""

    customer_id: str
    values: Dict[str, float]

    def vector(self, columns: Sequence[str]) -> List[float]:
        return [self.values[name] for name in columns]


def _customer_features(
    customer: Customer, clustering_type: ClusteringType, now: datetime, sentinel: int
) -> Dict[str, float]:
    purchase_count = customer.purchase_count or 0
    total_purchases = float(customer.total_purchases or 0)

    if clustering_type == ClusteringType.RFM:
        return {
            "recency_days": days_since(customer.last_purchase, now, sentinel),
            "purchase_count": purchase_count,
            "total_purchase_amount": total_purchases,
        }

    if clustering_type == ClusteringType.BEHAVIORAL:
        return {
            "purchase_count": purchase_count,
            "average_purchase_value": total_purchases / purchase_count if purchase_count > 0 else 0.0,
            "open_ticket_count": sum(1 for ticket in customer.tickets if ticket.is_open),
            "total_quantity": float(customer.total_quantity or 0),
        }

    return {
        "account_age_days": days_since(customer.created_at, now, sentinel),
        "purchase_count": purchase_count,
        "ticket_count": len(customer.tickets),
        "invoice_count": len(customer.invoices),
        "recency_days": days_since(customer.last_purchase, now, sentinel),
    }


def extract_features(
    customers: Iterable[Customer],
    clustering_type: ClusteringType,
    now: Optional[datetime] = None,
) -> List[CustomerFeatures]:
    """Build feature rows for already loaded customers (tickets/invoices included as needed)."""
    clustering_type = ClusteringType(clustering_type)
    now = now or utc_now()
    sentinel = settings.SEGMENT_RECENCY_SENTINEL_DAYS
    return [
        CustomerFeatures(customer.id, _customer_features(customer, clustering_type, now, sentinel))
        for customer in customers
    ]


def feature_matrix(rows: Sequence[CustomerFeatures], columns: Sequence[str]) -> np.ndarray:
    """Stack the selected columns of ``rows`` into an n x m float matrix."""
    if not rows:
        return np.empty((0, len(columns)), dtype=float)
    return np.array([row.vector(columns) for row in rows], dtype=float)


class FeatureExtractor:
    """Loads an owner's active customers and derives clustering features."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_customers(self, owner_id: str, clustering_type: ClusteringType) -> List[Customer]:
        query = (
            select(Customer)
            .where(Customer.owner_id == owner_id, Customer.is_active == True)  # noqa: E712
            .order_by(Customer.created_at, Customer.id)
        )
        if clustering_type in (ClusteringType.BEHAVIORAL, ClusteringType.ENGAGEMENT):
            query = query.options(selectinload(Customer.tickets))
        if clustering_type == ClusteringType.ENGAGEMENT:
            query = query.options(selectinload(Customer.invoices))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def extract(
        self, owner_id: str, clustering_type: ClusteringType, now: Optional[datetime] = None
    ) -> List[CustomerFeatures]:
        """
        Feature rows for every active customer of ``owner_id``.

        Returns an empty list when the owner has no active customers.
        """
        clustering_type = ClusteringType(clustering_type)
        customers = await self.load_customers(owner_id, clustering_type)
        logger.debug(
            "Extracting %s features for %d customers", clustering_type.value, len(customers)
        )
        return extract_features(customers, clustering_type, now)

    @staticmethod
    def columns_for(clustering_type: ClusteringType) -> Sequence[str]:
        return FEATURE_NAMES[ClusteringType(clustering_type)]
