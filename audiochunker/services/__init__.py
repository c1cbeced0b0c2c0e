"""Services layer for the segmentation and delivery core."""

from .delivery_gate import DeliveryGate
from .scheduler import SegmentationScheduler
from .session_controller import SessionController
from .publisher import RecorderPublisher

__all__ = [
    "DeliveryGate",
    "SegmentationScheduler",
    "SessionController",
    "RecorderPublisher"
]
