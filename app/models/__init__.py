from app.models.customer import Customer
from app.models.ticket import SupportTicket
from app.models.invoice import Invoice
from app.models.segment import Segment, SegmentMember, SegmentAnalysis

__all__ = [
    "Customer",
    "SupportTicket",
    "Invoice",
    # Segmentation
    "Segment",
    "SegmentMember",
    "SegmentAnalysis",
]
