from __future__ import annotations

import threading
from collections.abc import Iterator
from http.server import HTTPServer
from pathlib import Path
from typing import Any

import pytest

from thoughtsort.errors import EmbeddingError, TranscriptionError
from thoughtsort.ingest.pipeline import IngestionPipeline
from thoughtsort.models import Category, ClassificationResult
from thoughtsort.server.api import build_api_handler
from thoughtsort.server.store import RemoteStore


class FakeClassifier:
    def __init__(self) -> None:
        self.results: list[ClassificationResult | Exception] = []
        self.calls: list[tuple[str, list[str], str | None]] = []
        self.title = "Quick note"

    def queue(
        self,
        category: str,
        *,
        title: str = "Note",
        formatted: str = "",
        explicit: bool = False,
    ) -> None:
        self.results.append(
            ClassificationResult(
                formatted_transcript=formatted,
                title=title,
                category=category,
                is_explicit_placement=explicit,
                confidence_score=0.9,
            )
        )

    def classify(
        self, transcript: str, categories: list[Category], locale: str | None
    ) -> ClassificationResult:
        self.calls.append((transcript, [c.name for c in categories], locale))
        if not self.results:
            return ClassificationResult(formatted_transcript="", title="Untitled", category="General")
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def generate_title(self, transcript: str, locale: str | None) -> str:
        return self.title


class FakeEmbedder:
    model = "fake-embedding"

    def __init__(self) -> None:
        self.vectors: dict[str, list[float]] = {}
        self.default = [1.0, 0.0, 0.0]
        self.fail = False
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding service down")
        return list(self.vectors.get(text, self.default))


class FakeTranscriber:
    def __init__(self) -> None:
        self.text = "transcribed from audio"
        self.fail = False
        self.calls: list[tuple[bytes, str | None]] = []

    def transcribe(self, audio: bytes, *, locale: str | None = None, filename: str = "") -> str:
        self.calls.append((audio, locale))
        if self.fail:
            raise TranscriptionError("whisper unavailable")
        return self.text


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("THOUGHTSORT_CONFIG", str(tmp_path / "config.json"))
    for key in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "THOUGHTSORT_API_TOKEN"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def server_db(tmp_path: Path) -> Path:
    return tmp_path / "server.sqlite"


@pytest.fixture
def remote_store(server_db: Path) -> Iterator[RemoteStore]:
    store = RemoteStore(server_db)
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def pipeline(
    remote_store: RemoteStore,
    classifier: FakeClassifier,
    embedder: FakeEmbedder,
    transcriber: FakeTranscriber,
) -> IngestionPipeline:
    return IngestionPipeline(remote_store, classifier, embedder, transcriber)  # type: ignore[arg-type]


@pytest.fixture
def api_server(
    server_db: Path,
    classifier: FakeClassifier,
    embedder: FakeEmbedder,
    transcriber: FakeTranscriber,
) -> Iterator[dict[str, Any]]:
    """Serve the remote API on an ephemeral port with fake AI collaborators."""

    RemoteStore(server_db).close()

    def factory(store: RemoteStore) -> IngestionPipeline:
        return IngestionPipeline(store, classifier, embedder, transcriber)  # type: ignore[arg-type]

    handler = build_api_handler(
        server_db,
        tokens={"tok-u1": "u1", "tok-u2": "u2"},
        pipeline_factory=factory,
    )
    server = HTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield {
            "url": f"http://127.0.0.1:{server.server_address[1]}",
            "db_path": server_db,
        }
    finally:
        server.shutdown()
        server.server_close()
