"""
FinGraph Event Log

Append-only audit trail of recalculation runs and other domain events,
exposed as a reverse-chronological feed.

- Ordering: by `at` timestamp, ties broken by insertion order.
- Appends are atomic under a lock; concurrent runs never lose entries.
- recent() returns a snapshot: iterating it is unaffected by appends
  that happen mid-iteration, and it can be iterated again.
"""

from __future__ import annotations
from bisect import insort
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, TYPE_CHECKING
import itertools
import json
import logging
import threading

from fingraph.core.enums import AuditEventType

if TYPE_CHECKING:
    from .cascade import RecalcRun

logger = logging.getLogger(__name__)


# =============================================================================
# AUDIT EVENT
# =============================================================================

@dataclass(frozen=True)
class AuditEvent:
    """
    A single entry in the event log.

    `fields` carries the domain-specific payload; it is flattened next to
    `type` and `at` on the wire.
    """
    type: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.fields)
        data["type"] = self.type
        data["at"] = self.at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        payload = {k: v for k, v in data.items() if k not in ("type", "at")}
        at = datetime.fromisoformat(data["at"]) if data.get("at") else datetime.now(timezone.utc)
        return cls(type=data["type"], at=at, fields=payload)


def recalc_event(run: "RecalcRun") -> AuditEvent:
    """The single audit event describing a (complete or partial) run."""
    fields: Dict[str, Any] = {
        "runId": run.run_id,
        "source": run.source.value,
        "order": [n.value for n in run.order],
        "scopeKey": run.scope.to_key(),
        "partial": run.partial,
    }
    if run.partial:
        fields["failedNode"] = run.failed_node.value if run.failed_node else None
        fields["error"] = run.error
    return AuditEvent(type=AuditEventType.RECALC.value, at=run.triggered_at, fields=fields)


# =============================================================================
# SNAPSHOT VIEW
# =============================================================================

class RecentEvents:
    """
    Finite, restartable, newest-first view over a snapshot of the log.

    Iteration is lazy over the captured snapshot; later appends to the
    log are not visible.
    """

    def __init__(self, snapshot: Sequence[AuditEvent]):
        self._snapshot: Tuple[AuditEvent, ...] = tuple(snapshot)

    def __iter__(self) -> Iterator[AuditEvent]:
        return reversed(self._snapshot)

    def __len__(self) -> int:
        return len(self._snapshot)

    def __getitem__(self, index: int) -> AuditEvent:
        return self._snapshot[::-1][index]

    def to_list(self) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self]


# =============================================================================
# EVENT LOG
# =============================================================================

class EventLog:
    """
    Append-only store of audit events.

    Internally entries are kept sorted by (at, sequence). Appends with a
    timestamp at or after the newest entry are O(1); an older timestamp
    is inserted in position.
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._entries: List[Tuple[datetime, int, AuditEvent]] = []
        self._max_entries = max_entries
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def append(self, event: AuditEvent) -> AuditEvent:
        """Add an event to the log."""
        if not isinstance(event, AuditEvent):
            raise TypeError(f"Expected AuditEvent, got {type(event).__name__}")

        with self._lock:
            entry = (event.at, next(self._sequence), event)
            if not self._entries or self._entries[-1][:2] <= entry[:2]:
                self._entries.append(entry)
            else:
                # sequence numbers are unique, so comparison never reaches the event
                insort(self._entries, entry)

            overflow = len(self._entries) - self._max_entries
            if overflow > 0:
                del self._entries[:overflow]

        logger.debug(f"Audit event appended: {event.type}")
        return event

    def record(self, event_type: str, **fields: Any) -> AuditEvent:
        """Build and append an event of `event_type` stamped now."""
        return self.append(AuditEvent(type=event_type, fields=fields))

    def record_recalc(self, run: "RecalcRun") -> AuditEvent:
        """Append the single `recalc` event for a run."""
        return self.append(recalc_event(run))

    def recent(self, limit: int = 20) -> RecentEvents:
        """
        At most `limit` most recent events, newest first.

        Raises:
            ValueError: if limit is negative.
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        with self._lock:
            window = self._entries[-limit:] if limit else []
            snapshot = [e[2] for e in window]
        return RecentEvents(snapshot)

    def by_type(self, event_type: str) -> List[AuditEvent]:
        """All retained events of a type, oldest first."""
        with self._lock:
            return [e[2] for e in self._entries if e[2].type == event_type]

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            events = [e[2].to_dict() for e in self._entries]
        return {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "count": len(events),
            "events": events,
        }

    def export_json(self, path: str) -> int:
        """Write all retained events to a JSON file. Returns the event count."""
        data = self.to_dict()
        Path(path).write_text(json.dumps(data, indent=2, default=str))
        logger.info(f"Exported {data['count']} audit events to {path}")
        return data["count"]

    @classmethod
    def load_json(cls, path: str, max_entries: int = DEFAULT_MAX_ENTRIES) -> "EventLog":
        log = cls(max_entries=max_entries)
        data = json.loads(Path(path).read_text())
        for item in data.get("events", []):
            log.append(AuditEvent.from_dict(item))
        return log
