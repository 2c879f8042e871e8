"""Support ticket model (customer support desk)."""

from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.customer import generate_id
from app.utils.dates import utc_now

OPEN_TICKET_STATUSES = ("open", "in_progress")


class SupportTicket(Base):
    """Support ticket raised by a customer."""

    __tablename__ = "support_tickets"

    id = Column(String(36), primary_key=True, default=generate_id)
    owner_id = Column(String(36), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)

    subject = Column(String(255), nullable=False)
    description = Column(Text)

    # Status tracking: open, in_progress, resolved, closed
    status = Column(String(30), default="open", nullable=False, index=True)
    priority = Column(String(20), default="medium")

    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    customer = relationship("Customer", back_populates="tickets")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TICKET_STATUSES

    def __repr__(self):
        return f"<SupportTicket {self.id} - {self.subject[:30]}>"
