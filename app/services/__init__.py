# Services module
from app.services.segmentation import SegmentationService

__all__ = [
    "SegmentationService",
]
