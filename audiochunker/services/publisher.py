"""Recorder event publisher for pub/sub event publishing."""

import logging
from pubsub import pub

from ..models.segment import DeliveryReport
from ..models.stats import LifecycleEvent

logger = logging.getLogger(__name__)

SEGMENT_TOPIC = "recorder_segments"
LIFECYCLE_TOPIC = "recorder_lifecycle"


class RecorderPublisher:
    """Publishes delivery reports and lifecycle events using pubsub.pub."""

    def __init__(self, segment_topic: str = SEGMENT_TOPIC, lifecycle_topic: str = LIFECYCLE_TOPIC):
        """Initialize recorder publisher.

        Args:
            segment_topic: Pub/sub topic for per-segment delivery reports
            lifecycle_topic: Pub/sub topic for session lifecycle events
        """
        self.segment_topic = segment_topic
        self.lifecycle_topic = lifecycle_topic
        logger.info(f"RecorderPublisher initialized with topics: {segment_topic}, {lifecycle_topic}")

    def publish_delivery_report(self, report: DeliveryReport) -> None:
        """Publish a delivery report to the segment topic.

        Args:
            report: DeliveryReport to publish
        """
        pub.sendMessage(self.segment_topic, report=report)
        logger.debug(f"Published delivery report: seq={report.seq} ({report.outcome.value})")

    def publish_lifecycle_event(self, event: LifecycleEvent) -> None:
        """Publish a lifecycle event to the lifecycle topic."""
        pub.sendMessage(self.lifecycle_topic, event=event)
        logger.debug(f"Published lifecycle event: {event.event_type} ({event.state.value})")
