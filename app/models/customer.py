from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Float
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.utils.dates import utc_now


def generate_id() -> str:
    return str(uuid.uuid4())


class Customer(Base):
    """Customer of a business owner (tenant).

    Purchase aggregates are denormalized onto the row by the sales module and
    are what segmentation reads.
    """

    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=generate_id)
    owner_id = Column(String(36), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), index=True)
    phone = Column(String(30))
    company = Column(String(255))
    address = Column(String(255))
    city = Column(String(100))
    country = Column(String(100))
    notes = Column(Text)

    # Purchase aggregates
    total_purchases = Column(Float, default=0, nullable=False)
    total_quantity = Column(Float, default=0, nullable=False)
    purchase_count = Column(Integer, default=0, nullable=False)
    last_purchase = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    tickets = relationship("SupportTicket", back_populates="customer")
    invoices = relationship("Invoice", back_populates="customer")

    def __repr__(self):
        return f"<Customer {self.name}>"
