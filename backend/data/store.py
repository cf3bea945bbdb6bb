import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from errors import StorageError
from .models import Lead


def utc_now_iso() -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix (2024-01-31T02:15:00.123Z)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonlLog:
    """
    Append-only newline-delimited JSON file.
    Each append writes one complete line under a lock, so concurrent sessions
    never interleave partial records.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False) + "\n"
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
        except OSError as exc:
            raise StorageError(f"append to {self.path} failed: {exc}") from exc

    def read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                return [json.loads(line) for line in fh if line.strip()]
        except (OSError, ValueError) as exc:
            raise StorageError(f"read of {self.path} failed: {exc}") from exc


class LeadStore(JsonlLog):
    def append_lead(self, lead: Lead) -> None:
        self.append(lead.to_record())

    def read_leads(self) -> List[Lead]:
        return [Lead.model_validate(rec) for rec in self.read()]


class EventLog(JsonlLog):
    def append_event(self, event_type: str, **payload: Any) -> Dict[str, Any]:
        record = {"ts": utc_now_iso(), "type": event_type}
        record.update({k: v for k, v in payload.items() if v is not None})
        self.append(record)
        return record

    def read_events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        events = self.read()
        if event_type is None:
            return events
        return [e for e in events if e.get("type") == event_type]
