from __future__ import annotations

import logging
from typing import Any, Protocol

from ..config import ThoughtsortConfig
from ..errors import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_FASTEMBED_MODEL = "BAAI/bge-small-en-v1.5"


class EmbeddingClient(Protocol):
    model: str

    def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingClient:
    def __init__(
        self,
        model: str = DEFAULT_OPENAI_EMBEDDING_MODEL,
        *,
        api_key: str | None = None,
        timeout_s: float = 25.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self.client: Any = client
        if self.client is None:
            try:
                from openai import OpenAI  # type: ignore

                self.client = OpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)
            except Exception as exc:
                raise EmbeddingError(f"openai embedding client init failed: {exc}") from exc

    def embed(self, text: str) -> list[float]:
        try:
            resp = self.client.embeddings.create(model=self.model, input=text)
            vector = resp.data[0].embedding
        except Exception as exc:
            logger.exception("embedding call failed", extra={"model": self.model})
            raise EmbeddingError(f"embedding call failed: {exc}") from exc
        if not vector:
            raise EmbeddingError("embedding response was empty")
        return [float(v) for v in vector]


class FastEmbedClient:
    """Local ONNX embeddings; needs the optional fastembed extra."""

    def __init__(self, model: str = DEFAULT_FASTEMBED_MODEL) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise EmbeddingError("fastembed is required for local embeddings") from exc
        self.model = model
        self._embedder = TextEmbedding(model_name=model)

    def embed(self, text: str) -> list[float]:
        try:
            vectors = list(self._embedder.embed([text]))
        except Exception as exc:  # pragma: no cover
            raise EmbeddingError(f"fastembed failed: {exc}") from exc
        if not vectors:
            raise EmbeddingError("fastembed returned no vector")
        return [float(v) for v in vectors[0]]


def get_embedding_client(cfg: ThoughtsortConfig) -> EmbeddingClient:
    if cfg.embedding_provider == "fastembed":
        return FastEmbedClient(cfg.embedding_model or DEFAULT_FASTEMBED_MODEL)
    return OpenAIEmbeddingClient(
        cfg.embedding_model or DEFAULT_OPENAI_EMBEDDING_MODEL,
        api_key=cfg.openai_api_key,
        timeout_s=cfg.classify_timeout_s,
    )
