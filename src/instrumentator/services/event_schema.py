"""Validation of model/backend payloads into ``Event`` records.

Both the backend (validating raw model output) and the client (validating
backend responses) go through :func:`parse_events`, so a payload is either
accepted whole or rejected with :class:`SchemaError`.
"""

from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from pydantic import ValidationError

from ..domain.event_models import Event, EventFields


class SchemaError(ValueError):
    """Raised when a payload does not match the expected event shape."""


def new_event_id() -> str:
    return uuid.uuid4().hex


def _require_events_list(payload: Any) -> List[Any]:
    if not isinstance(payload, Mapping):
        raise SchemaError(f"Expected a JSON object with an 'events' array, got {type(payload).__name__}")
    raw_events = payload.get("events")
    if not isinstance(raw_events, list):
        raise SchemaError("Response does not contain a valid 'events' array")
    return raw_events


def _parse_item(index: int, item: Any) -> EventFields:
    if not isinstance(item, Mapping):
        raise SchemaError(f"Event #{index} is not an object")
    try:
        return EventFields.model_validate(item)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()})
        raise SchemaError(f"Event #{index} is missing or has non-string fields: {', '.join(fields)}") from exc


def parse_events(
    payload: Any,
    *,
    preserve_ids: bool = False,
    id_factory: Callable[[], str] = new_event_id,
) -> List[Event]:
    """Validate ``payload`` and return its events with client-side identities.

    With ``preserve_ids`` False every event gets a fresh id, whatever the
    payload carried. With ``preserve_ids`` True a supplied non-empty string id
    is kept unless an earlier event in the same payload already claimed it.
    """

    raw_events = _require_events_list(payload)
    parsed = [_parse_item(idx, item) for idx, item in enumerate(raw_events)]

    used: Set[str] = set()
    events: List[Event] = []
    for item, fields in zip(raw_events, parsed):
        event_id: Optional[str] = None
        if preserve_ids:
            supplied = item.get("id")
            if isinstance(supplied, str) and supplied.strip() and supplied not in used:
                event_id = supplied
        if event_id is None:
            event_id = id_factory()
            while event_id in used:
                event_id = id_factory()
        used.add(event_id)
        events.append(Event(id=event_id, **fields.model_dump()))
    return events


def strip_ids(events: Sequence[EventFields]) -> List[Dict[str, str]]:
    """Return wire dicts without the local-only ``id`` field."""

    return [event.to_wire() for event in events]


def reconcile_ids(
    previous: Sequence[Event],
    incoming: Sequence[Event],
    *,
    id_factory: Callable[[], str] = new_event_id,
) -> List[Event]:
    """Carry ids over from ``previous`` so unchanged rows keep their identity.

    An incoming event identical in content to a previous one inherits that
    event's id. An incoming id that belongs to a previous event with different
    content is replaced, as is any id already taken in the result.
    """

    available: Dict[tuple, List[str]] = {}
    previous_ids: Set[str] = set()
    for event in previous:
        available.setdefault(event.content_key(), []).append(event.id)
        previous_ids.add(event.id)

    claimed: List[Optional[str]] = []
    for event in incoming:
        ids = available.get(event.content_key())
        claimed.append(ids.pop(0) if ids else None)

    used: Set[str] = {c for c in claimed if c}
    result: List[Event] = []
    for event, inherited in zip(incoming, claimed):
        if inherited:
            event_id = inherited
        else:
            event_id = event.id
            if event_id in previous_ids or event_id in used:
                event_id = id_factory()
                while event_id in used or event_id in previous_ids:
                    event_id = id_factory()
            used.add(event_id)
        result.append(event if event.id == event_id else event.model_copy(update={"id": event_id}))
    return result
