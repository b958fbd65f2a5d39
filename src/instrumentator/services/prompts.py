from __future__ import annotations

import json
from typing import Dict, List, Sequence

from ..domain.event_models import EventFields

_EVENT_ITEM_SCHEMA: Dict[str, object] = {
    "type": "OBJECT",
    "properties": {
        "action": {"type": "STRING", "description": "Human-readable description of the user action"},
        "view": {"type": "STRING", "description": "Page identifier, e.g. 'view:pricing'"},
        "click": {"type": "STRING", "description": "Element identifier, e.g. 'click:submit-button', or empty string"},
        "eventName": {"type": "STRING", "description": "'view:<page>:click:<element>' or 'view:<page>'"},
        "eventProperties": {"type": "STRING", "description": "JSON object string of properties, or empty string"},
    },
    "required": ["action", "view", "click", "eventName", "eventProperties"],
    "propertyOrdering": ["action", "view", "click", "eventName", "eventProperties"],
}

GENERATE_RESPONSE_SCHEMA: Dict[str, object] = {
    "type": "OBJECT",
    "properties": {"events": {"type": "ARRAY", "items": _EVENT_ITEM_SCHEMA}},
    "required": ["events"],
}

REFINE_RESPONSE_SCHEMA: Dict[str, object] = {
    "type": "OBJECT",
    "properties": {
        "events": {"type": "ARRAY", "items": _EVENT_ITEM_SCHEMA},
        "message": {"type": "STRING"},
    },
    "required": ["events", "message"],
}

_NAMING_RULES = """IMPORTANT NAMING RULES:
- All identifiers use lowercase letters and hyphens ONLY (no underscores or spaces)
- Examples: "submit-button", "sign-up-cta", "footer-help", "pricing-page"
- view: "view:<page>" (e.g. "view:pricing")
- click: "click:<element>" (e.g. "click:submit-button"), or empty string "" for view-only events
- eventName format:
  - For clicks: "view:<page>:click:<element>" (e.g. "view:pricing:click:submit-button")
  - For view-only: "view:<page>" (e.g. "view:pricing")
- eventProperties format:
  - JSON string of relevant context-based properties with their possible values
  - Use empty string "" if no meaningful properties exist
  - Examples: "{\\"plan-type\\": [\\"free\\", \\"pro\\", \\"enterprise\\"]}" or "{\\"cta-location\\": [\\"header\\", \\"footer\\"]}"
  - Keys and values use lowercase with hyphens (e.g. "plan-type", "cta-location")"""

GENERATE_SYSTEM_INSTRUCTION = f"""You are an Amplitude event tracking expert. Your task is to analyze product features and generate precise Amplitude event tracking specifications.

Given a feature description and/or screenshot, generate tracking events that:
1. Cover every user interaction the feature exposes, plus the page views that frame them
2. Use a human-readable action (e.g. "Click on submit button on pricing page")
3. Include event properties only when they carry meaningful context

{_NAMING_RULES}

Return ONLY valid JSON matching the provided schema, no other text."""

REFINE_SYSTEM_INSTRUCTION = f"""You are an Amplitude event tracking expert. You help refine and improve event tracking specifications based on user feedback.

{_NAMING_RULES}

Apply the user's requested changes to the current events. Return the COMPLETE updated list of events, including events the request does not affect, and a brief explanation of what was changed in "message"."""


def generation_prompt(description: str) -> str:
    return f"Feature Description: {description}\n\nGenerate appropriate Amplitude events for tracking this feature."


def refinement_prompt(events: Sequence[EventFields], instruction: str) -> str:
    current: List[Dict[str, str]] = [e.to_wire() for e in events]
    return (
        "Current Event Instrumentation List (JSON):\n"
        f"{json.dumps(current, indent=2)}\n\n"
        f'User Request: "{instruction}"\n\n'
        "Instructions:\n"
        "1. Update the event list based on the user's request.\n"
        "2. Add, remove, or modify events as needed.\n"
        "3. Return the NEW full list of events and a short message describing the change."
    )
