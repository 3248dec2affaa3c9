from __future__ import annotations

import logging
from typing import Any

from ..config import ThoughtsortConfig
from ..errors import TranscriptionError
from ..utils import language_code

logger = logging.getLogger(__name__)


class WhisperTranscriber:
    """Server-side re-transcription of uploaded recordings."""

    def __init__(
        self,
        model: str = "whisper-1",
        *,
        api_key: str | None = None,
        timeout_s: float = 60.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self.client: Any = client
        if self.client is not None:
            return
        try:
            from openai import OpenAI  # type: ignore

            self.client = OpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)
        except Exception as exc:  # pragma: no cover
            logger.exception("transcriber: openai client init failed", exc_info=exc)
            self.client = None

    @classmethod
    def from_config(cls, cfg: ThoughtsortConfig) -> WhisperTranscriber:
        return cls(
            cfg.transcription_model,
            api_key=cfg.openai_api_key,
            timeout_s=cfg.transcribe_timeout_s,
        )

    def transcribe(
        self, audio: bytes, *, locale: str | None = None, filename: str = "recording.m4a"
    ) -> str:
        if self.client is None:
            raise TranscriptionError("transcriber is not configured")
        try:
            resp = self.client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio),
                language=language_code(locale),
            )
        except Exception as exc:
            logger.warning(
                "transcription failed", extra={"model": self.model}, exc_info=exc
            )
            raise TranscriptionError(f"transcription failed: {exc}") from exc
        text = getattr(resp, "text", None)
        if text is None and isinstance(resp, dict):
            text = resp.get("text")
        return (text or "").strip()
