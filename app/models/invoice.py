from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Float
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.customer import generate_id
from app.utils.dates import utc_now


class Invoice(Base):
    """Invoice model for customer billing."""

    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_id)
    owner_id = Column(String(36), nullable=False, index=True)
    invoice_number = Column(String(50), index=True, nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(20), default="draft", nullable=False)
    total = Column(Float, default=0)
    due_date = Column(DateTime)
    paid_date = Column(DateTime)
    notes = Column(Text)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    customer = relationship("Customer", back_populates="invoices")

    def __repr__(self):
        return f"<Invoice {self.invoice_number}>"
