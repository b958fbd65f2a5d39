from __future__ import annotations

import base64
import logging
import mimetypes
import re
from pathlib import Path
from typing import List, Optional

from ..domain.event_models import Event
from ..services.event_schema import SchemaError, parse_events
from .transport import BackendCallFailed, EventsApi, InputError

logger = logging.getLogger(__name__)

SCREENSHOT_ONLY_INSTRUCTION = "Generate a list of analytics events based on this UI screenshot."
MAX_IMAGE_BYTES = 4 * 1024 * 1024

_DATA_URI_HEADER = re.compile(r"^data:[^,;]*(?:;[^,;]+)*;base64,", re.IGNORECASE)


class GenerationFailed(BackendCallFailed):
    fallback_message = "Failed to generate events. Please check your API key and try again."


def strip_data_uri(image: str) -> str:
    return _DATA_URI_HEADER.sub("", image.strip(), count=1)


def encode_image_file(path: str | Path) -> str:
    """Read an image file into a ``data:`` URI, refusing files over 4 MB."""

    p = Path(path)
    size = p.stat().st_size
    if size > MAX_IMAGE_BYTES:
        raise InputError("File size must be less than 4MB")
    mime = mimetypes.guess_type(p.name)[0] or "image/png"
    if not mime.startswith("image/"):
        raise InputError(f"{p.name} is not an image")
    data = base64.b64encode(p.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{data}"


def build_generation_payload(description: str, image: Optional[str] = None) -> dict:
    description = description or ""
    image_b64 = strip_data_uri(image) if image else ""
    if not description.strip() and not image_b64:
        raise InputError("Describe the feature or attach a screenshot")
    payload: dict = {"description": description if description.strip() else SCREENSHOT_ONLY_INSTRUCTION}
    if image_b64:
        payload["imageBase64"] = image_b64
    return payload


class GenerationClient:
    """Turns a description and/or screenshot into a fresh list of events."""

    path = "/generateEvents"

    def __init__(self, api: Optional[EventsApi] = None) -> None:
        self.api = api or EventsApi()

    async def generate(self, description: str, image: Optional[str] = None) -> List[Event]:
        payload = build_generation_payload(description, image)
        try:
            data = await self.api.post(self.path, payload)
            events = parse_events(data)
        except BackendCallFailed as exc:
            raise GenerationFailed(exc.backend_message, detail=exc.detail) from exc
        except SchemaError as exc:
            logger.warning("Generation response rejected: %s", exc)
            raise GenerationFailed(detail=str(exc)) from exc
        logger.info("Received %d generated events", len(events))
        return events
