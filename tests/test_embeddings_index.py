"""Tests for the embedding index file and its loader."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

from policyaudit.errors import IndexLoadError
from policyaudit.index.embeddings import EmbeddingIndex, EmbeddingIndexLoader, read_index, write_index
from policyaudit.models import EmbeddingRecord


def _write(path: Path, payload: object) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _item(file_name: str, page: int, vector: list[float]) -> dict[str, object]:
    return {"id": 1, "fileName": file_name, "relativePath": "", "page": page, "vector": vector}


class TestEmbeddingIndex:
    """Test EmbeddingIndex construction."""

    def test_from_records(self) -> None:
        records = [
            EmbeddingRecord("a.pdf", 1, np.array([1.0, 0.0])),
            EmbeddingRecord("a.pdf", 2, np.array([0.0, 1.0])),
        ]
        index = EmbeddingIndex.from_records("text-embedding-004", records)

        assert len(index) == 2
        assert index.dimension == 2
        assert index.matrix.shape == (2, 2)
        assert index.matrix.dtype == np.float32
        assert not index.matrix.flags.writeable

    def test_empty(self) -> None:
        index = EmbeddingIndex.from_records("m", [])
        assert len(index) == 0
        assert index.dimension == 0

    def test_inconsistent_dimensions(self) -> None:
        records = [EmbeddingRecord("a.pdf", 1, np.zeros(3)), EmbeddingRecord("a.pdf", 2, np.zeros(4))]
        with pytest.raises(IndexLoadError, match="dimension 3"):
            EmbeddingIndex.from_records("m", records)


class TestReadIndex:
    """Test read_index."""

    def test_reads_items(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "index.json",
            {"model": "text-embedding-004", "dim": 3, "items": [_item("GG.1510.pdf", 4, [0.1, 0.2, 0.3])]},
        )
        index = read_index(path)

        assert index.model_id == "text-embedding-004"
        assert index.dimension == 3
        assert index.records[0].document_id == "GG.1510.pdf"
        assert index.records[0].page == 4
        np.testing.assert_allclose(index.records[0].vector, [0.1, 0.2, 0.3], rtol=1e-6)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(IndexLoadError, match="not found"):
            read_index(tmp_path / "nope.json")

    def test_corrupt_json(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(IndexLoadError):
            read_index(path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        with pytest.raises(IndexLoadError):
            read_index(_write(tmp_path / "index.json", [1, 2, 3]))

    def test_items_not_a_list(self, tmp_path: Path) -> None:
        with pytest.raises(IndexLoadError):
            read_index(_write(tmp_path / "index.json", {"model": "m", "items": {}}))

    def test_malformed_item(self, tmp_path: Path) -> None:
        with pytest.raises(IndexLoadError, match="position 0"):
            read_index(_write(tmp_path / "index.json", {"items": [{"fileName": "a.pdf", "vector": [1.0]}]}))

    def test_invalid_page(self, tmp_path: Path) -> None:
        with pytest.raises(IndexLoadError, match="Invalid page"):
            read_index(_write(tmp_path / "index.json", {"items": [_item("a.pdf", 0, [1.0])]}))

    def test_mixed_dimensions(self, tmp_path: Path) -> None:
        payload = {"items": [_item("a.pdf", 1, [1.0, 0.0]), _item("a.pdf", 2, [1.0, 0.0, 0.0])]}
        with pytest.raises(IndexLoadError):
            read_index(_write(tmp_path / "index.json", payload))

    def test_declared_dimension_mismatch(self, tmp_path: Path) -> None:
        payload = {"model": "m", "dim": 768, "items": [_item("a.pdf", 1, [1.0, 0.0])]}
        with pytest.raises(IndexLoadError, match="dim=768"):
            read_index(_write(tmp_path / "index.json", payload))

    def test_written_index_reads_back(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        write_index(path, "m", [EmbeddingRecord("a.pdf", 2, np.array([0.5, 0.25], dtype="float32"))])

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["dim"] == 2
        assert data["items"][0]["fileName"] == "a.pdf"
        assert read_index(path).records[0].page == 2


class TestEmbeddingIndexLoader:
    """Test the load-once loader."""

    def test_loads_once(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "index.json", {"model": "m", "items": [_item("a.pdf", 1, [1.0])]})
        loader = EmbeddingIndexLoader(path)

        with patch("policyaudit.index.embeddings.read_index", wraps=read_index) as spy:
            first = loader.load()
            second = loader.load()

        assert first is second
        spy.assert_called_once()

    def test_concurrent_first_load(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "index.json", {"model": "m", "items": [_item("a.pdf", 1, [1.0])]})
        loader = EmbeddingIndexLoader(path)
        seen: list[EmbeddingIndex] = []

        with patch("policyaudit.index.embeddings.read_index", wraps=read_index) as spy:
            threads = [threading.Thread(target=lambda: seen.append(loader.load())) for _ in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert spy.call_count == 1
        assert all(index is seen[0] for index in seen)

    def test_failure_not_cached(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        loader = EmbeddingIndexLoader(path)
        with pytest.raises(IndexLoadError):
            loader.load()

        _write(path, {"model": "m", "items": [_item("a.pdf", 1, [1.0])]})
        assert len(loader.load()) == 1
