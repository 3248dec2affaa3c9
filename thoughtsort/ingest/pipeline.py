from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..ai.classifier import TranscriptClassifier
from ..ai.embeddings import EmbeddingClient
from ..ai.transcriber import WhisperTranscriber
from ..config import ThoughtsortConfig
from ..errors import (
    CategoryNotFoundError,
    NoSpeechDetectedError,
    TranscriptionError,
    TranscriptTooLongError,
)
from ..models import Entry, IngestionRequest, ProcessEntryResult
from ..utils import new_id, now_iso
from .resolver import DEFAULT_MAX_CATEGORIES, DEFAULT_SIMILARITY_THRESHOLD, CategoryResolver

if TYPE_CHECKING:
    from ..server.store import RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRANSCRIPT_CHARS = 10000


class IngestionPipeline:
    """Turn one captured transcript (and optional recording) into a stored entry.

    Every AI call happens before the first write, and all writes share one
    store transaction, so a failed ingestion leaves no entry and no category.
    """

    def __init__(
        self,
        store: RemoteStore,
        classifier: TranscriptClassifier,
        embedder: EmbeddingClient,
        transcriber: WhisperTranscriber | None = None,
        *,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_categories: int = DEFAULT_MAX_CATEGORIES,
        max_transcript_chars: int = DEFAULT_MAX_TRANSCRIPT_CHARS,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.embedder = embedder
        self.transcriber = transcriber
        self.centroids = store.centroids
        self.resolver = CategoryResolver(
            store,
            self.centroids,
            similarity_threshold=similarity_threshold,
            max_categories=max_categories,
        )
        self.max_transcript_chars = max_transcript_chars

    @classmethod
    def from_config(
        cls,
        store: RemoteStore,
        cfg: ThoughtsortConfig,
        *,
        classifier: TranscriptClassifier,
        embedder: EmbeddingClient,
        transcriber: WhisperTranscriber | None = None,
    ) -> IngestionPipeline:
        return cls(
            store,
            classifier,
            embedder,
            transcriber,
            similarity_threshold=cfg.similarity_threshold,
            max_categories=cfg.max_categories,
            max_transcript_chars=cfg.max_transcript_chars,
        )

    def process(self, request: IngestionRequest) -> ProcessEntryResult:
        transcript, audio_url = self._resolve_transcript(request)
        if request.category_id:
            return self._process_manual(request, transcript, audio_url)
        return self._process_classified(request, transcript, audio_url)

    def _resolve_transcript(self, request: IngestionRequest) -> tuple[str, str | None]:
        device_text = (request.transcript or "").strip()
        text = ""
        audio_url: str | None = None
        if request.audio_path:
            audio = self.store.get_audio(request.audio_path)
            if audio is None:
                logger.warning("audio object missing", extra={"audio_path": request.audio_path})
            else:
                audio_url = request.audio_path
                text = self._transcribe(audio, request)
        if not text:
            text = device_text
        if not text:
            raise NoSpeechDetectedError()
        if len(text) > self.max_transcript_chars:
            raise TranscriptTooLongError(len(text), self.max_transcript_chars)
        return text, audio_url

    def _transcribe(self, audio: bytes, request: IngestionRequest) -> str:
        if self.transcriber is None:
            return ""
        try:
            return self.transcriber.transcribe(audio, locale=request.locale)
        except TranscriptionError:
            # Device transcript is the fallback.
            logger.warning(
                "re-transcription failed; using device transcript",
                extra={"audio_path": request.audio_path},
            )
            return ""

    def _process_manual(
        self, request: IngestionRequest, transcript: str, audio_url: str | None
    ) -> ProcessEntryResult:
        category_id = request.category_id or ""
        category = self.store.get_category(category_id, request.user_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        title = self.classifier.generate_title(transcript, request.locale)
        embedding = self.embedder.embed(transcript)
        with self.store.transaction():
            self.centroids.update(category.id, embedding)
            entry = self.store.insert_entry(
                self._new_entry(request, transcript, title, category.id, embedding, audio_url)
            )
        refreshed = self.store.get_category(category.id)
        if refreshed is None:
            raise CategoryNotFoundError(category.id)
        logger.info(
            "stored manual entry", extra={"entry_id": entry.id, "category_id": category.id}
        )
        return ProcessEntryResult(entry=entry, category=refreshed, is_new_category=False)

    def _process_classified(
        self, request: IngestionRequest, transcript: str, audio_url: str | None
    ) -> ProcessEntryResult:
        existing = self.store.list_categories(request.user_id)
        classification = self.classifier.classify(transcript, existing, request.locale)
        text = classification.formatted_transcript or transcript
        embedding = self.embedder.embed(text)
        with self.store.transaction():
            resolved = self.resolver.resolve(classification, existing, embedding, request.user_id)
            entry = self.store.insert_entry(
                self._new_entry(
                    request, text, classification.title, resolved.category_id, embedding, audio_url
                )
            )
        category = self.store.get_category(resolved.category_id)
        if category is None:
            raise CategoryNotFoundError(resolved.category_id)
        logger.info(
            "stored classified entry",
            extra={
                "entry_id": entry.id,
                "category_id": category.id,
                "is_new_category": resolved.is_new,
                "confidence": classification.confidence_score,
            },
        )
        return ProcessEntryResult(
            entry=entry,
            category=category,
            is_new_category=resolved.is_new,
            classification=classification,
        )

    @staticmethod
    def _new_entry(
        request: IngestionRequest,
        transcript: str,
        title: str,
        category_id: str,
        embedding: list[float],
        audio_url: str | None,
    ) -> Entry:
        return Entry(
            id=new_id(),
            user_id=request.user_id,
            transcript=transcript,
            title=title,
            category_id=category_id,
            embedding_vector=embedding,
            locale=request.locale,
            created_at=request.created_at or now_iso(),
            is_pending=True,
            seen_at=None,
            audio_url=audio_url,
        )
