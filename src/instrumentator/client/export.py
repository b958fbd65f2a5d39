from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Callable, List, Sequence, Tuple

from ..domain.event_models import EventFields
from .properties import format_properties, parse_event_properties

DEFAULT_EXPORT_FILENAME = "amplitude_events.csv"

_Column = Tuple[str, Callable[[EventFields], str]]

FULL_COLUMNS: List[_Column] = [
    ("Action", lambda e: e.action),
    ("View", lambda e: e.view),
    ("Click", lambda e: e.click),
    ("Event Name", lambda e: e.event_name),
    ("Event Properties", lambda e: e.event_properties),
]

COMPACT_COLUMNS: List[_Column] = [
    ("Action", lambda e: e.action),
    ("Event Name", lambda e: e.event_name),
    ("Event Properties", lambda e: e.event_properties),
]


def _columns(compact: bool) -> List[_Column]:
    return COMPACT_COLUMNS if compact else FULL_COLUMNS


def to_csv(events: Sequence[EventFields], compact: bool = False) -> str:
    """CSV with a bare header row and every value quoted (``"`` doubled)."""

    columns = _columns(compact)
    buf = io.StringIO()
    buf.write(",".join(name for name, _ in columns) + "\n")
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for event in events:
        writer.writerow([getter(event) for _, getter in columns])
    return buf.getvalue().rstrip("\n")


def _flatten(value: str) -> str:
    return " ".join(value.replace("\t", " ").splitlines()).strip()


def to_clipboard_tsv(events: Sequence[EventFields], compact: bool = False) -> str:
    """Tab-separated rows for pasting into a spreadsheet; properties joined with ``;``."""

    columns = _columns(compact)
    lines = ["\t".join(name for name, _ in columns)]
    for event in events:
        cells = []
        for name, getter in columns:
            value = getter(event)
            if name == "Event Properties":
                value = format_properties(parse_event_properties(value))
            cells.append(_flatten(value))
        lines.append("\t".join(cells))
    return "\n".join(lines)


def write_csv(path: str | Path, events: Sequence[EventFields], compact: bool = False) -> Path:
    target = Path(path)
    if target.is_dir():
        target = target / DEFAULT_EXPORT_FILENAME
    target.write_text(to_csv(events, compact=compact), encoding="utf-8")
    return target
