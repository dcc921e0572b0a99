import json
import os
from pathlib import Path

from warden.event_bus import EventBus, WardenEvent


class AuditLogger:
    """
    Subscribes to an Event Bus and appends every event to an
    append-only JSONL file: <data_dir>/<repo>/audit.jsonl, or
    <data_dir>/audit.jsonl for events without a repository.
    """

    def __init__(self, data_dir: Path, event_bus: EventBus):
        self.data_dir = Path(data_dir)
        self.event_bus = event_bus
        self.event_bus.subscribe(self.log_event)

    def path_for(self, event: WardenEvent) -> Path:
        if event.repo:
            return self.data_dir / event.repo / "audit.jsonl"
        return self.data_dir / "audit.jsonl"

    def log_event(self, event: WardenEvent) -> None:
        """Callback to handle incoming events and append them to the JSONL file."""
        path = self.path_for(event)
        os.makedirs(path.parent, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.model_dump()) + "\n")

    def close(self) -> None:
        self.event_bus.unsubscribe(self.log_event)
