from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..domain.event_models import Event
from ..services.event_schema import SchemaError, parse_events, reconcile_ids, strip_ids
from .transport import BackendCallFailed, EventsApi, InputError

logger = logging.getLogger(__name__)

DEFAULT_REFINEMENT_MESSAGE = "I've updated the event list based on your feedback."


class RefinementFailed(BackendCallFailed):
    fallback_message = "Sorry, I encountered an error updating the events."


@dataclass(frozen=True)
class RefinementResult:
    events: List[Event]
    message: str


def build_refinement_payload(events: Sequence[Event], instruction: str) -> dict:
    if not (instruction or "").strip():
        raise InputError("Instruction must not be empty")
    return {"events": strip_ids(events), "instruction": instruction}


class RefinementClient:
    """Sends the whole current event list plus an instruction; gets the whole new list back."""

    path = "/refineEvents"

    def __init__(self, api: Optional[EventsApi] = None) -> None:
        self.api = api or EventsApi()

    async def refine(self, events: Sequence[Event], instruction: str) -> RefinementResult:
        current = list(events)
        payload = build_refinement_payload(current, instruction)
        try:
            data = await self.api.post(self.path, payload)
            refined = parse_events(data, preserve_ids=True)
        except BackendCallFailed as exc:
            raise RefinementFailed(exc.backend_message, detail=exc.detail) from exc
        except SchemaError as exc:
            logger.warning("Refinement response rejected: %s", exc)
            raise RefinementFailed(detail=str(exc)) from exc

        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            message = DEFAULT_REFINEMENT_MESSAGE
        refined = reconcile_ids(current, refined)
        logger.info("Refinement returned %d events (was %d)", len(refined), len(current))
        return RefinementResult(events=refined, message=message)
