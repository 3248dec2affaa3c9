from __future__ import annotations

from .classifier import TranscriptClassifier, parse_classification
from .embeddings import get_embedding_client
from .transcriber import WhisperTranscriber

__all__ = [
    "TranscriptClassifier",
    "WhisperTranscriber",
    "get_embedding_client",
    "parse_classification",
]
