"""
Async HTTP access to the Instrumentator backend.

The generation and refinement clients share this wrapper; it turns every
transport problem, non-2xx status and backend ``{"error": ...}`` body into a
single :class:`BackendCallFailed` with a displayable message.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8000"


class BackendCallFailed(Exception):
    """A backend operation failed.

    ``message`` is what the user sees: the backend's own error text when it
    sent one, otherwise the class fallback. ``detail`` keeps the technical
    cause for logs.
    """

    fallback_message = "The request failed. Please try again."

    def __init__(self, backend_message: Optional[str] = None, detail: Optional[str] = None) -> None:
        self.backend_message = backend_message
        self.message = backend_message or self.fallback_message
        self.detail = detail or self.message
        super().__init__(self.detail)


class InputError(ValueError):
    """The caller asked for an operation with unusable input; nothing was sent."""


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        return value if value > 0 else default
    except ValueError:
        return default


class EventsApi:
    """Posts JSON to the backend and returns the decoded object body."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("INSTRUMENTATOR_API_URL") or DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout or _env_float("INSTRUMENTATOR_API_TIMEOUT", 120.0)
        self._transport = transport

    async def post(self, path: str, payload: dict) -> Any:
        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("Backend %s timed out after %.0fms", path, (time.monotonic() - t0) * 1000)
            raise BackendCallFailed(detail=f"Request timed out after {self.timeout:.0f}s") from exc
        except httpx.HTTPError as exc:
            logger.warning("Backend %s failed: %s", path, exc)
            raise BackendCallFailed(detail=f"Could not reach the backend: {exc}") from exc

        latency = (time.monotonic() - t0) * 1000
        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            logger.warning("Backend %s returned HTTP %d in %.0fms", path, resp.status_code, latency)
            raise BackendCallFailed(
                str(error) if error else None,
                detail=f"HTTP {resp.status_code}: {error or resp.text[:200]}",
            )
        if isinstance(data, dict) and data.get("error"):
            raise BackendCallFailed(str(data["error"]))

        logger.debug("Backend %s answered in %.0fms", path, latency)
        return data
