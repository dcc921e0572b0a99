import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field


class WardenEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    agent_name: str
    repo: Optional[str] = None
    payload: Dict[str, Any]


class EventBus:
    """A lightweight, synchronous event bus carrying WARDEN's audit trail."""

    def __init__(self):
        self._subscribers: List[Callable[[WardenEvent], None]] = []

    def subscribe(self, callback: Callable[[WardenEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[WardenEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(
        self,
        event_type: str,
        agent_name: str,
        payload: Dict[str, Any],
        repo: Optional[str] = None,
    ) -> WardenEvent:
        """Construct and broadcast a WardenEvent to all subscribers."""
        event = WardenEvent(
            event_type=event_type,
            agent_name=agent_name,
            repo=repo,
            payload=payload,
        )

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # A failing subscriber (like a bad file write) must not stop a decision
                logger.error(f"[EVENTS] Subscriber failed on {event.event_type}: {e}")

        return event


# Process-wide default bus; components accept their own for tests.
bus = EventBus()
