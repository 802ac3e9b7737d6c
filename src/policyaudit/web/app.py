"""FastAPI application exposing evidence retrieval over HTTP."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from policyaudit.config import AppConfig, RetrievalConfig
from policyaudit.errors import DimensionMismatchError, EmbeddingError
from policyaudit.index.search import PageSearcher
from policyaudit.models import Question
from policyaudit.retrieval.engine import AuditEngine

LOGGER = logging.getLogger(__name__)


class QuestionPayload(BaseModel):
    id: str
    text: str


class CheckPayload(BaseModel):
    questions: List[QuestionPayload] = Field(default_factory=list)


class SearchPayload(BaseModel):
    query: str
    top_k: int = 10


def create_app(
    config: AppConfig | None = None,
    *,
    retrieval: RetrievalConfig | None = None,
    base_dir: Path | None = None,
    engine: AuditEngine | None = None,
) -> FastAPI:
    """Build the API; the engine is created on startup unless one is injected.

    A missing or corrupt embedding index aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        owned = app.state.engine is None
        if owned:
            app.state.engine = AuditEngine.from_config(config or AppConfig(), retrieval, base_dir=base_dir)
        try:
            yield
        finally:
            if owned:
                await app.state.engine.aclose()
                app.state.engine = None

    app = FastAPI(title="policyaudit", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.engine = engine

    @app.exception_handler(RequestValidationError)
    async def invalid_payload_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid payload", "errors": jsonable_encoder(exc.errors())},
        )

    def _engine(request: Request) -> AuditEngine:
        current = request.app.state.engine
        if current is None:
            raise HTTPException(status_code=503, detail="Engine not loaded")
        return current

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        current = _engine(request)
        return {
            "status": "ok",
            "records": len(current.index),
            "dimension": current.index.dimension,
            "model": current.index.model_id,
        }

    @app.post("/check")
    async def check_questions(payload: CheckPayload, request: Request) -> dict[str, Any]:
        if not payload.questions:
            raise HTTPException(status_code=400, detail="Provide { questions: Question[] }")
        current = _engine(request)
        questions = [Question(id=q.id, text=q.text) for q in payload.questions]
        try:
            results = await current.check(questions)
        except DimensionMismatchError as exc:
            LOGGER.error("Check failed: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"results": [result.to_dict() for result in results]}

    @app.post("/search")
    async def search_pages(payload: SearchPayload, request: Request) -> dict[str, Any]:
        query = payload.query.strip()
        if not query:
            raise HTTPException(status_code=400, detail="Empty query")
        current = _engine(request)
        top_k = max(1, min(payload.top_k, 50))
        searcher = PageSearcher(current.vectorizer, current.index, current.store)
        try:
            results = await searcher.search(query, top_k=top_k)
        except EmbeddingError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except DimensionMismatchError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {
            "query": query,
            "results": [
                {"documentId": r.document_id, "page": r.page, "score": r.score, "preview": r.preview}
                for r in results
            ],
        }

    return app
