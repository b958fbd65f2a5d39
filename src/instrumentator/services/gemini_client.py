"""Thin HTTP client for Gemini's ``generateContent`` endpoint with JSON output.

Only the backend talks to Gemini; the API key never leaves this process.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from ..observability.metrics import LLM_LATENCY, LLM_REQUESTS

logger = logging.getLogger(__name__)
LOG = logging.getLogger("instrumentator.llm")

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


class LLMNotConfigured(RuntimeError):
    """The backend has no credential for the model service."""


class LLMCallFailed(RuntimeError):
    """The model call failed or produced no usable JSON."""


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


@dataclass
class GeminiConfig:
    api_key: Optional[str]
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    connect_timeout: int = 5
    read_timeout: int = 120

    @staticmethod
    def from_env() -> "GeminiConfig":
        return GeminiConfig(
            api_key=os.getenv("GEMINI_API_KEY") or None,
            model=os.getenv("GEMINI_MODEL") or DEFAULT_MODEL,
            base_url=(os.getenv("GEMINI_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            connect_timeout=_env_int("INSTRUMENTATOR_LLM_CONNECT_TIMEOUT", 5),
            read_timeout=_env_int("INSTRUMENTATOR_LLM_READ_TIMEOUT", 120),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


def _build_session() -> requests.Session:
    # No retries: a failed call is reported and the user decides to re-send.
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=0, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def sniff_image_mime(image_base64: str) -> str:
    try:
        head = base64.b64decode(image_base64[:64] + "=" * (-len(image_base64[:64]) % 4), validate=False)
    except (ValueError, TypeError):
        return "image/png"
    for signature, mime in _IMAGE_SIGNATURES:
        if head.startswith(signature):
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def image_part(image_base64: str) -> Dict[str, Any]:
    return {"inlineData": {"mimeType": sniff_image_mime(image_base64), "data": image_base64}}


def text_part(text: str) -> Dict[str, Any]:
    return {"text": text}


def extract_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        m = re.search(r"\{[\s\S]*\}", text)
        if not m:
            raise
        return json.loads(m.group(0))


class GeminiClient:
    def __init__(self, config: Optional[GeminiConfig] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or GeminiConfig.from_env()
        self._session = session or _build_session()

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url}/models/{self.config.model}:generateContent"

    def build_body(self, system_instruction: str, parts: List[Dict[str, Any]], schema: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
                "temperature": 0.2,
            },
        }

    def generate_json(
        self,
        system_instruction: str,
        parts: List[Dict[str, Any]],
        schema: Dict[str, Any],
        *,
        operation: str = "generate",
    ) -> Any:
        """Run one schema-constrained call and return the decoded JSON value."""

        if not self.config.configured:
            LLM_REQUESTS.labels(operation=operation, outcome="not_configured").inc()
            raise LLMNotConfigured("API key not configured")

        body = self.build_body(system_instruction, parts, schema)
        LOG.debug("llm_request", extra={"model": self.config.model, "operation": operation, "parts": len(parts)})
        start = time.perf_counter()
        try:
            resp = self._session.post(
                self.endpoint,
                json=body,
                headers={"x-goog-api-key": self.config.api_key or ""},
                timeout=(self.config.connect_timeout, self.config.read_timeout),
            )
        except requests.exceptions.RequestException as exc:
            LLM_REQUESTS.labels(operation=operation, outcome="transport_error").inc()
            LOG.warning("llm_transport_failed", extra={"operation": operation, "err": str(exc)})
            raise LLMCallFailed(f"Model service unreachable: {exc}") from exc
        finally:
            LLM_LATENCY.labels(operation=operation).observe(time.perf_counter() - start)

        if resp.status_code >= 400:
            LLM_REQUESTS.labels(operation=operation, outcome="http_error").inc()
            detail = _error_detail(resp)
            LOG.warning("llm_http_error", extra={"operation": operation, "status": resp.status_code, "err": detail})
            raise LLMCallFailed(f"Model service returned HTTP {resp.status_code}: {detail}")

        try:
            value = extract_json(self.response_text(resp.json()))
        except LLMCallFailed as exc:
            LLM_REQUESTS.labels(operation=operation, outcome="bad_response").inc()
            LOG.warning("llm_bad_response", extra={"operation": operation, "err": str(exc)})
            raise
        except ValueError as exc:
            LLM_REQUESTS.labels(operation=operation, outcome="bad_response").inc()
            LOG.warning("llm_bad_response", extra={"operation": operation, "err": str(exc)})
            raise LLMCallFailed(f"Model returned invalid JSON: {exc}") from exc

        LLM_REQUESTS.labels(operation=operation, outcome="ok").inc()
        LOG.info("llm_response_ok", extra={"operation": operation, "model": self.config.model})
        return value

    @staticmethod
    def response_text(data: Any) -> str:
        if not isinstance(data, dict):
            raise LLMCallFailed("Cannot extract text from model response")
        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason")
            if reason:
                raise LLMCallFailed(f"Request blocked by model: {reason}")
            raise LLMCallFailed("Model response has no candidates")
        content = candidates[0].get("content") or {}
        texts = [p.get("text", "") for p in content.get("parts") or [] if isinstance(p, dict)]
        text = "".join(texts).strip()
        if not text:
            finish = candidates[0].get("finishReason") or "unknown"
            raise LLMCallFailed(f"Model returned an empty response (finishReason={finish})")
        return text


def _error_detail(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return resp.text[:200]


_client: Optional[GeminiClient] = None


def get_gemini_client() -> GeminiClient:
    """Return the process-wide client; rebuilt when the environment changes the config."""

    global _client
    cfg = GeminiConfig.from_env()
    if _client is None or _client.config != cfg:
        _client = GeminiClient(cfg)
    return _client
