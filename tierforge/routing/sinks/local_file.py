"""Local file sink — writes events to local JSON files.

Layout: {base_path}/{topic}/{execution_id}/{event_id}.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from tierforge.core.hasher import canonical_bytes
from tierforge.models.events import NotificationEvent

logger = logging.getLogger(__name__)


class LocalFileSink:
    """Writes events to local JSON files.

    Parameters
    ----------
    base_path:
        Root directory for event files.  Defaults to ``.tierforge/events``.
    """

    def __init__(self, base_path: Path | str | None = None) -> None:
        self._base = Path(base_path) if base_path else Path(".tierforge/events")
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def sink_name(self) -> str:
        return "local_file"

    def accept(self, event: NotificationEvent) -> None:
        topic = event.topic or "_general"
        execution_id = event.execution_id or "_engine"

        target_dir = self._base / topic / execution_id
        target_dir.mkdir(parents=True, exist_ok=True)

        target_file = target_dir / f"{event.event_id}.json"
        target_file.write_bytes(canonical_bytes(event.model_dump(mode="json")))

        logger.debug("LocalFileSink: wrote %s to %s", event.event_id, target_file)

    def list_events(self, execution_id: str | None = None) -> list[Path]:
        """List event files, optionally restricted to one execution."""
        if not self._base.exists():
            return []
        if execution_id:
            return sorted(self._base.glob(f"*/{execution_id}/*.json"))
        return sorted(self._base.rglob("*.json"))

    def read_event(self, path: Path) -> dict:
        return json.loads(path.read_bytes())
