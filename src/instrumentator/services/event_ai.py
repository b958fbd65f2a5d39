from __future__ import annotations

"""Event generation and refinement on top of the Gemini client.

Model output goes through the same validator the client uses; a payload that
does not match the event schema is reported as a failed call, never partially
accepted.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..domain.event_models import Event, EventFields
from .event_schema import SchemaError, parse_events
from .gemini_client import GeminiClient, get_gemini_client, image_part, text_part
from .prompts import (
    GENERATE_RESPONSE_SCHEMA,
    GENERATE_SYSTEM_INSTRUCTION,
    REFINE_RESPONSE_SCHEMA,
    REFINE_SYSTEM_INSTRUCTION,
    generation_prompt,
    refinement_prompt,
)

logger = logging.getLogger(__name__)


def generate_events(
    description: str,
    image_base64: Optional[str] = None,
    client: Optional[GeminiClient] = None,
) -> List[Event]:
    if not (description or "").strip() and not image_base64:
        raise ValueError("Description or image is required")
    client = client or get_gemini_client()

    parts: List[Dict[str, Any]] = []
    if image_base64:
        parts.append(image_part(image_base64))
    parts.append(text_part(generation_prompt(description)))

    data = client.generate_json(GENERATE_SYSTEM_INSTRUCTION, parts, GENERATE_RESPONSE_SCHEMA, operation="generate")
    events = parse_events(data)
    logger.info("Generated %d events (image=%s)", len(events), bool(image_base64))
    return events


def refine_events(
    events: Sequence[EventFields],
    instruction: str,
    client: Optional[GeminiClient] = None,
) -> Tuple[List[Event], str]:
    if not (instruction or "").strip():
        raise ValueError("Events and instruction are required")
    client = client or get_gemini_client()

    parts = [text_part(refinement_prompt(events, instruction))]
    data = client.generate_json(REFINE_SYSTEM_INSTRUCTION, parts, REFINE_RESPONSE_SCHEMA, operation="refine")
    refined = parse_events(data, preserve_ids=True)
    message = data.get("message") if isinstance(data, dict) else None
    if message is not None and not isinstance(message, str):
        raise SchemaError("'message' must be a string")
    logger.info("Refined %d -> %d events", len(events), len(refined))
    return refined, message or ""
