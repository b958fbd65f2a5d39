from __future__ import annotations

from fastapi import APIRouter

from ...services.gemini_client import GeminiConfig

router = APIRouter(prefix="/diag", tags=["diagnostics"])


@router.get("/llm")
def diag_llm():
    cfg = GeminiConfig.from_env()
    return {
        "provider": "gemini",
        "has_api_key": cfg.configured,
        "base_url": cfg.base_url,
        "model": cfg.model,
        "ready": cfg.configured,
    }
