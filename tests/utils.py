from __future__ import annotations

from src.instrumentator.domain.event_models import Event


def make_event(event_id="e1", name="view:pricing:click:subscribe", **overrides):
    data = {
        "id": event_id,
        "action": "Click on subscribe button on pricing page",
        "view": "view:pricing",
        "click": "click:subscribe",
        "event_name": name,
        "event_properties": '{"plan-type": ["free", "pro"]}',
    }
    data.update(overrides)
    return Event(**data)


def wire_event(name="view:pricing:click:subscribe", **overrides):
    data = {
        "action": "Click on subscribe button on pricing page",
        "view": "view:pricing",
        "click": "click:subscribe",
        "eventName": name,
        "eventProperties": '{"plan-type": ["free", "pro"]}',
    }
    data.update(overrides)
    return data
