"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation. Factories build
unsaved ORM instances; add them to the session and commit.
"""

from .customer import (
    CustomerFactory,
    HighValueCustomerFactory,
    ProspectCustomerFactory,
    InactiveCustomerFactory,
)
from .ticket import SupportTicketFactory, OpenTicketFactory, ResolvedTicketFactory
from .invoice import InvoiceFactory

__all__ = [
    "CustomerFactory",
    "HighValueCustomerFactory",
    "ProspectCustomerFactory",
    "InactiveCustomerFactory",
    # Support
    "SupportTicketFactory",
    "OpenTicketFactory",
    "ResolvedTicketFactory",
    # Billing
    "InvoiceFactory",
]
