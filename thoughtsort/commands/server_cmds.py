from __future__ import annotations

import typer
from rich import print

from thoughtsort.ai.classifier import TranscriptClassifier
from thoughtsort.ai.embeddings import get_embedding_client
from thoughtsort.ai.transcriber import WhisperTranscriber
from thoughtsort.client.local_store import LocalStore
from thoughtsort.config import ThoughtsortConfig
from thoughtsort.errors import EmbeddingError
from thoughtsort.ingest.pipeline import IngestionPipeline
from thoughtsort.server.api import PipelineFactory, serve
from thoughtsort.server.store import RemoteStore


def build_pipeline_factory(cfg: ThoughtsortConfig) -> PipelineFactory:
    classifier = TranscriptClassifier.from_config(cfg)
    embedder = get_embedding_client(cfg)
    transcriber = WhisperTranscriber.from_config(cfg)

    def factory(store: RemoteStore) -> IngestionPipeline:
        return IngestionPipeline.from_config(
            store,
            cfg,
            classifier=classifier,
            embedder=embedder,
            transcriber=transcriber,
        )

    return factory


def serve_cmd(
    *,
    cfg: ThoughtsortConfig,
    host: str | None,
    port: int | None,
    db_path: str | None,
    token: str | None,
) -> None:
    tokens = dict(cfg.server_tokens)
    if token:
        tokens[token] = cfg.user_id
    if not tokens:
        print("[red]No API tokens configured (server_tokens or --token)[/red]")
        raise typer.Exit(code=1)
    try:
        factory = build_pipeline_factory(cfg)
    except EmbeddingError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    bind_host = host or cfg.server_host
    bind_port = port or cfg.server_port
    print(f"Serving on http://{bind_host}:{bind_port}")
    try:
        serve(
            bind_host,
            bind_port,
            db_path=db_path or cfg.server_db_path,
            tokens=tokens,
            pipeline_factory=factory,
        )
    except KeyboardInterrupt:
        print("Stopped")


def cleanup_audio_cmd(*, store: RemoteStore, max_age_hours: int) -> None:
    """Remove recordings older than the retention window."""

    try:
        result = store.cleanup_stale_audio(max_age_hours=max_age_hours)
    finally:
        store.close()
    print(f"Cleared audio from {result['entries']} entries ({result['objects']} objects removed)")


def init_db_cmd(*, store: LocalStore | RemoteStore) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    print(f"Initialized database at {store.db_path}")
    store.close()
