from __future__ import annotations

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from ...domain.event_models import (
    ErrorResponse,
    GenerateEventsRequest,
    GenerateEventsResponse,
    RefineEventsRequest,
    RefineEventsResponse,
    SystemPrompts,
)
from ...services import event_ai
from ...services.event_schema import SchemaError
from ...services.gemini_client import LLMCallFailed, LLMNotConfigured
from ...services.prompts import GENERATE_SYSTEM_INSTRUCTION, REFINE_SYSTEM_INSTRUCTION

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/generateEvents", response_model=GenerateEventsResponse, responses=_ERROR_RESPONSES)
def generate_events(req: GenerateEventsRequest):
    if not req.description.strip() and not req.image_base64:
        return _error(status.HTTP_400_BAD_REQUEST, "Description or image is required")
    try:
        events = event_ai.generate_events(req.description, req.image_base64)
    except LLMNotConfigured as exc:
        logger.error("GEMINI_API_KEY not found in environment")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    except (LLMCallFailed, SchemaError) as exc:
        logger.warning("Event generation failed: %s", exc)
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))
    return GenerateEventsResponse(events=events)


@router.post("/refineEvents", response_model=RefineEventsResponse, responses=_ERROR_RESPONSES)
def refine_events(req: RefineEventsRequest):
    if not req.instruction.strip():
        return _error(status.HTTP_400_BAD_REQUEST, "Events and instruction are required")
    try:
        events, message = event_ai.refine_events(req.events, req.instruction)
    except LLMNotConfigured as exc:
        logger.error("GEMINI_API_KEY not found in environment")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    except (LLMCallFailed, SchemaError) as exc:
        logger.warning("Event refinement failed: %s", exc)
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))
    return RefineEventsResponse(events=events, message=message)


@router.get("/events/system-prompt", response_model=SystemPrompts)
def system_prompt() -> SystemPrompts:
    return SystemPrompts(generate=GENERATE_SYSTEM_INSTRUCTION, refine=REFINE_SYSTEM_INSTRUCTION)
