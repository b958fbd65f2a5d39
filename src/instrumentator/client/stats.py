from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Sequence

from ..domain.event_models import EventFields


@dataclass(frozen=True)
class DashboardStats:
    total_events: int
    unique_views: int
    unique_actions: int
    events_per_view: Dict[str, int] = field(default_factory=dict)
    events_by_type: Dict[str, int] = field(default_factory=dict)


def classify_event(event: EventFields) -> str:
    name = event.event_name
    if ":click:" in name:
        return "click"
    if ":submit" in name:
        return "submit"
    if ":change" in name:
        return "change"
    # "view:<page>" is a page view
    if name.startswith("view:") or ":view" in name:
        return "view"
    if event.click:
        return "interaction"
    return "other"


def compute_stats(events: Sequence[EventFields]) -> DashboardStats:
    per_view = Counter(e.view for e in events)
    by_type = Counter(classify_event(e) for e in events)
    return DashboardStats(
        total_events=len(events),
        unique_views=len(per_view),
        unique_actions=len({e.action for e in events}),
        events_per_view=dict(per_view),
        events_by_type=dict(by_type),
    )
