"""Event stream for SignalForm forms.

A form announces significant changes (field writes, resets, validation
results, history navigation, teardown) as typed FormEvent records. Hosts
subscribe through the form's EventEmitter to drive autosave, analytics or
an audit log without reaching into the reactive graph.

Listeners are called synchronously. A listener that raises is logged and
skipped; the remaining listeners and the form itself are unaffected.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from signalform.types import FormEventType

logger = logging.getLogger(__name__)


def new_event_id() -> str:
    """Generate a unique event identifier."""
    return f"evt_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class FormEvent:
    """A single event emitted by a form.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_3f9a...")
        type: Event type from FormEventType
        form_id: ID of the form that emitted the event
        ts: UTC timestamp when the event occurred
        field: Name of the field concerned, if the event is field-scoped
        payload: Optional event-specific data

    Examples:
        >>> event = FormEvent(
        ...     event_id="evt_001",
        ...     type=FormEventType.FIELD_UPDATED,
        ...     form_id="form_001",
        ...     field="email",
        ...     payload={"value": "ada@example.com"},
        ... )
        >>> event.to_dict()["type"]
        'field.updated'
    """
    event_id: str
    type: FormEventType
    form_id: str
    ts: datetime = dataclass_field(default_factory=lambda: datetime.now(timezone.utc))
    field: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        """Normalize a string event type to FormEventType."""
        if isinstance(self.type, str) and not isinstance(self.type, FormEventType):
            object.__setattr__(self, "type", FormEventType(self.type))

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        Timestamp is formatted as an ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "formId": self.form_id,
            "ts": self.ts.isoformat(),
        }
        if self.field is not None:
            result["field"] = self.field
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Single-line JSON, suitable for appending to a JSONL log.

        Payload values that are not JSON-native (dates, Decimals) are
        rendered with ``str``.
        """
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormEvent":
        """Create FormEvent from a dictionary with camelCase keys."""
        ts = datetime.fromisoformat(data["ts"].replace("Z", "+00:00"))
        return cls(
            event_id=data["eventId"],
            type=FormEventType(data["type"]),
            form_id=data["formId"],
            ts=ts,
            field=data.get("field"),
            payload=data.get("payload"),
        )


EventListener = Callable[[FormEvent], None]


class EventEmitter:
    """Registry of event listeners with synchronous, isolated dispatch.

    Features:
    - Type-specific subscriptions via ``on``
    - Wildcard subscriptions via ``on_any``
    - Listeners called in registration order, type-specific first

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> unsubscribe = emitter.on(FormEventType.FORM_RESET, seen.append)
        >>> emitter.emit(FormEvent("evt_1", FormEventType.FORM_RESET, "form_1"))
        >>> len(seen)
        1
    """

    def __init__(self):
        self._listeners: Dict[FormEventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: FormEventType, listener: EventListener) -> Callable[[], None]:
        """Subscribe to one event type.

        Returns:
            A zero-argument callable that removes the subscription
        """
        self._listeners.setdefault(event_type, []).append(listener)
        return lambda: self.off(event_type, listener)

    def on_any(self, listener: EventListener) -> Callable[[], None]:
        """Subscribe to every event type."""
        self._any_listeners.append(listener)
        return lambda: self.off_any(listener)

    def off(self, event_type: FormEventType, listener: EventListener) -> None:
        """Unsubscribe from one event type. Unknown listeners are ignored."""
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        """Remove a wildcard subscription. Unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: FormEvent) -> None:
        """Dispatch an event to every matching listener."""
        for listener in list(self._listeners.get(event.type, ())) + list(self._any_listeners):
            try:
                listener(event)
            except Exception:
                logger.warning(
                    "Listener %r failed on event %s", listener, event.type.value, exc_info=True
                )

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[FormEventType] = None) -> int:
        """Count registered listeners.

        Args:
            event_type: If given, count listeners for this type only;
                otherwise count all listeners, wildcard included.
        """
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(ls) for ls in self._listeners.values())


__all__ = [
    "FormEvent",
    "EventListener",
    "EventEmitter",
    "new_event_id",
]
