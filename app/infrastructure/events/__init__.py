"""
Event fan-out for pipeline observers.
"""

from app.infrastructure.events.broadcaster import EventBroadcaster, EventPublisher

__all__ = ["EventBroadcaster", "EventPublisher"]
