"""Tests for the FastAPI web application."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Sequence

import numpy as np
import pytest
from fastapi.testclient import TestClient

from policyaudit.config import AppConfig
from policyaudit.embedding.encoder import QUERY_TASK
from policyaudit.embedding.query import QueryVectorizer
from policyaudit.errors import EmbeddingError, IndexLoadError
from policyaudit.index.embeddings import EmbeddingIndex, write_index
from policyaudit.index.storage import MemoryPageStore, SQLitePageStore
from policyaudit.models import DocumentMetadata, EmbeddingRecord, PageRow
from policyaudit.retrieval.engine import AuditEngine
from policyaudit.web.app import create_app

QUESTION = "Does the plan notify members within 14 calendar days of an adverse determination?"
TARGET = "The Plan shall notify the Member within fourteen (14) calendar days of any adverse determination."


class StubProvider:
    model_id = "stub-embed"

    def __init__(self, vector: Sequence[float] = (1.0, 0.0, 0.0)) -> None:
        self.vector = np.asarray(vector, dtype="float32")

    async def embed(self, text: str, *, task_type: str = QUERY_TASK) -> np.ndarray:
        if "explode" in text:
            raise EmbeddingError("embed HTTP 503: unavailable")
        return self.vector

    async def embed_batch(self, texts: Sequence[str], *, task_type: str = QUERY_TASK) -> list[np.ndarray]:
        return [await self.embed(t) for t in texts]

    async def aclose(self) -> None:
        return None


def _engine(vector: Sequence[float] = (1.0, 0.0, 0.0)) -> AuditEngine:
    index = EmbeddingIndex.from_records(
        "stub-embed", [EmbeddingRecord("GG.1510.pdf", 2, np.array([1.0, 0.0, 0.0], dtype="float32"))]
    )
    store = MemoryPageStore({"GG.1510.pdf#2": f"{TARGET} Notices are mailed to the address on file."})
    return AuditEngine(QueryVectorizer(StubProvider(vector)), index, store)


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(engine=_engine()))


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_reports_index(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "records": 1, "dimension": 3, "model": "stub-embed"}

    def test_no_engine(self) -> None:
        """Without startup no engine is attached."""
        response = TestClient(create_app(AppConfig(api_key=""))).get("/health")
        assert response.status_code == 503


class TestCheckEndpoint:
    """Tests for POST /check."""

    def test_empty_questions(self, client: TestClient) -> None:
        response = client.post("/check", json={"questions": []})
        assert response.status_code == 400
        assert "questions" in response.json()["detail"]

    def test_missing_questions(self, client: TestClient) -> None:
        assert client.post("/check", json={}).status_code == 400

    def test_malformed_questions(self, client: TestClient) -> None:
        response = client.post("/check", json={"questions": "not a list"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid payload"

    def test_returns_results_in_order(self, client: TestClient) -> None:
        payload = {
            "questions": [
                {"id": "Q1", "text": QUESTION},
                {"id": "Q2", "text": "Will it explode?"},
            ]
        }
        response = client.post("/check", json=payload)

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["questionId"] for r in results] == ["Q1", "Q2"]
        assert results[0]["hasEvidence"] is True
        assert "fourteen (14) calendar days" in results[0]["packedContext"]
        assert results[1]["hasEvidence"] is False
        assert results[1]["packedContext"] == ""

    def test_dimension_mismatch(self) -> None:
        client = TestClient(create_app(engine=_engine(vector=(1.0, 0.0))))
        response = client.post("/check", json={"questions": [{"id": "Q1", "text": QUESTION}]})
        assert response.status_code == 500


class TestSearchEndpoint:
    """Tests for POST /search."""

    def test_empty_query(self, client: TestClient) -> None:
        response = client.post("/search", json={"query": "   "})
        assert response.status_code == 400
        assert "Empty query" in response.json()["detail"]

    def test_returns_previews(self, client: TestClient) -> None:
        response = client.post("/search", json={"query": "notification deadline", "top_k": 500})

        assert response.status_code == 200
        body = response.json()
        assert body["query"] == "notification deadline"
        assert body["results"][0]["documentId"] == "GG.1510.pdf"
        assert body["results"][0]["page"] == 2
        assert body["results"][0]["preview"].startswith("The Plan shall notify")

    def test_embedding_failure(self, client: TestClient) -> None:
        response = client.post("/search", json={"query": "explode"})
        assert response.status_code == 502


def _write_fixtures(tmp_path: Path) -> AppConfig:
    db_path = tmp_path / "policies.db"
    store = SQLitePageStore(db_path)
    store.upsert_document(
        DocumentMetadata(Path("GG.1510.pdf"), "GG.1510.pdf", "abc", 0.0, 1),
        [PageRow("GG.1510.pdf", 2, TARGET)],
    )
    store.close()
    index_path = tmp_path / "index.json"
    write_index(index_path, "stub-embed", [EmbeddingRecord("GG.1510.pdf", 2, np.array([1.0, 0.0, 0.0]))])
    return AppConfig(db_path=db_path, index_path=index_path, api_key="test-key")


class TestLifespan:
    """Tests for engine construction on startup."""

    def test_startup_loads_engine(self, tmp_path: Path) -> None:
        app = create_app(_write_fixtures(tmp_path))
        with TestClient(app) as client:
            response = client.get("/health")
            assert response.status_code == 200
            assert response.json()["records"] == 1
        assert app.state.engine is None

    def test_missing_index_aborts_startup(self, tmp_path: Path) -> None:
        config = _write_fixtures(tmp_path)
        config.index_path = tmp_path / "missing.json"

        with pytest.raises(IndexLoadError):
            with TestClient(create_app(config)):
                pass

    def test_injected_engine_kept(self) -> None:
        engine = _engine()
        app = create_app(engine=engine)
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
        assert app.state.engine is engine
        asyncio.run(engine.aclose())
