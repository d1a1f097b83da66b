"""FastAPI application setup for Study Grounding."""

from __future__ import annotations

from fastapi import FastAPI, Response

from study_grounding.api.dependencies import (
    get_app_settings,
    get_chat_service,
    get_database,
    get_embedding_client,
    get_ingest_pipeline,
    get_vector_search,
)
from study_grounding.api.routes_chat import router as chat_router
from study_grounding.api.routes_documents import router as documents_router
from study_grounding.api.routes_search import router as search_router
from study_grounding.core.logging import configure_logging
from study_grounding.core.metrics import metrics_response

configure_logging()

app = FastAPI(
    title="Study Grounding",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(documents_router, prefix="", tags=["documents"])
app.include_router(search_router, prefix="", tags=["search"])
app.include_router(chat_router, prefix="", tags=["chat"])


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_database()
    get_embedding_client()
    get_vector_search()
    get_ingest_pipeline()
    get_chat_service()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}


@app.get("/metrics", tags=["admin"])
def metrics() -> Response:
    return metrics_response()
