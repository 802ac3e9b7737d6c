"""Embedding providers used for query vectors and offline page indexing."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol, Sequence

import httpx
import numpy as np
from sentence_transformers import SentenceTransformer

from policyaudit.errors import EmbeddingError

DEFAULT_GEMINI_MODEL = "text-embedding-004"
DEFAULT_LOCAL_MODEL = "sentence-transformers/all-mpnet-base-v2"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1/models"

QUERY_TASK = "RETRIEVAL_QUERY"
DOCUMENT_TASK = "RETRIEVAL_DOCUMENT"

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns text into a fixed-dimension float vector."""

    model_id: str

    async def embed(self, text: str, *, task_type: str = QUERY_TASK) -> np.ndarray: ...

    async def embed_batch(
        self, texts: Sequence[str], *, task_type: str = DOCUMENT_TASK
    ) -> list[np.ndarray]: ...

    async def aclose(self) -> None: ...


class GeminiEmbeddingProvider:
    """Calls the Google Generative Language ``embedContent`` endpoint.

    One HTTP request per text. Any transport failure, non-2xx status or payload
    without ``embedding.values`` raises :class:`EmbeddingError`; no retries are
    attempted here.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_GEMINI_MODEL,
        api_base: str = GEMINI_API_BASE,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            logger.warning("GOOGLE_API_KEY is not set; embedding requests will be rejected")
        self.model_id = model
        self.api_key = api_key
        self.url = f"{api_base.rstrip('/')}/{model}:embedContent"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GeminiEmbeddingProvider:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def embed(self, text: str, *, task_type: str = QUERY_TASK) -> np.ndarray:
        payload = {"content": {"parts": [{"text": text}]}, "taskType": task_type}
        try:
            response = await self._client.post(
                self.url,
                params={"key": self.api_key},
                headers={"content-type": "application/json"},
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"embed request failed: {exc}") from exc

        if not response.is_success:
            raise EmbeddingError(f"embed HTTP {response.status_code}: {response.text[:500]}")

        try:
            data = response.json()
        except ValueError as exc:
            raise EmbeddingError("embed response is not valid JSON") from exc
        return _parse_values(data)

    async def embed_batch(
        self, texts: Sequence[str], *, task_type: str = DOCUMENT_TASK
    ) -> list[np.ndarray]:
        return list(await asyncio.gather(*(self.embed(t, task_type=task_type) for t in texts)))


def _parse_values(data: Any) -> np.ndarray:
    values = None
    if isinstance(data, dict):
        embedding = data.get("embedding")
        if isinstance(embedding, dict):
            values = embedding.get("values")
    if not isinstance(values, list) or not values:
        raise EmbeddingError("No embedding.values in response")
    try:
        vector = np.asarray(values, dtype="float32")
    except (TypeError, ValueError) as exc:
        raise EmbeddingError("embedding.values is not numeric") from exc
    if vector.ndim != 1:
        raise EmbeddingError(f"embedding.values must be a flat list, got shape {vector.shape}")
    return vector


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_LOCAL_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class LocalEmbeddingProvider:
    """Thin wrapper around `SentenceTransformer` for offline use.

    Encoding is CPU/GPU bound, so it runs in a worker thread to keep the
    event loop free for sibling questions.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self.model_id = self.config.model_name
        try:
            self._model = SentenceTransformer(
                self.config.model_name,
                backend=self.config.backend,
                device=self.config.device,
            )
        except Exception as exc:
            raise EmbeddingError(f"Unable to load model {self.config.model_name}: {exc}") from exc
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info("Loaded %s (backend: %s, dim: %d)", self.model_id, self.config.backend, self.dimension)

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        embeddings = self._model.encode(
            list(texts),
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    async def embed(self, text: str, *, task_type: str = QUERY_TASK) -> np.ndarray:
        try:
            vectors = await asyncio.to_thread(self.encode, [text])
        except Exception as exc:
            raise EmbeddingError(f"local embedding failed: {exc}") from exc
        return vectors[0]

    async def embed_batch(
        self, texts: Sequence[str], *, task_type: str = DOCUMENT_TASK
    ) -> list[np.ndarray]:
        vectors = await asyncio.to_thread(self.encode, texts)
        return list(vectors)

    async def aclose(self) -> None:
        return None
