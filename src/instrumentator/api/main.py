from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from typing import List

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.events import router as events_router
from .routers.diag import router as diag_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # GEMINI_API_KEY and friends may live in .env

APP_NAME = "Instrumentator API"
APP_VERSION = "0.1.0"

app = FastAPI(title=APP_NAME, version=APP_VERSION)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app.middleware("http")(metrics_middleware_factory())

app.include_router(events_router)
app.include_router(diag_router)

# Same routers under /api for hosts that proxy everything below one prefix
app.include_router(events_router, prefix="/api")
app.include_router(diag_router, prefix="/api")


def _cors_origins() -> List[str]:
    raw = os.getenv("INSTRUMENTATOR_CORS_ORIGINS") or "http://localhost:3000,http://localhost:5173"
    return [o.strip() for o in raw.split(",") if o.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    logger.info("Rejected request to %s: %s", request.url.path, "; ".join(problems))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request: " + "; ".join(problems)},
    )


def _info() -> dict:
    return {"name": APP_NAME, "version": APP_VERSION}


def _health() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "llm": "configured" if os.getenv("GEMINI_API_KEY") else "missing_api_key",
        },
    }


def _metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/")
def root():
    return _info()


@app.get("/health")
def health():
    return _health()


@app.get("/metrics")
def metrics() -> Response:
    return _metrics()


@app.get("/api")
def api_root():
    return _info()


@app.get("/api/health")
def api_health():
    return _health()


@app.get("/api/metrics")
def api_metrics() -> Response:
    return _metrics()
