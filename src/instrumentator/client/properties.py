"""Display-time interpretation of ``eventProperties``.

The model usually emits a JSON object string, sometimes free text. A failed
parse is never an error; the text is simply shown as-is.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Union


@dataclass(frozen=True)
class StructuredProperties:
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OpaqueText:
    text: str


EventProperties = Union[StructuredProperties, OpaqueText]


def parse_event_properties(raw: str) -> EventProperties:
    text = (raw or "").strip()
    if not text:
        return StructuredProperties()
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return OpaqueText(raw)
    if not isinstance(value, dict):
        return OpaqueText(raw)
    return StructuredProperties(value)


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(_format_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def format_properties(props: EventProperties, separator: str = "; ") -> str:
    """Render properties on one line: ``plan-type: free, pro; source: header``."""

    if isinstance(props, OpaqueText):
        return " ".join(props.text.split())
    return separator.join(f"{key}: {_format_value(value)}" for key, value in props.values.items())
