from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

SUPPORTED_LOCALES = {
    "en-US": "English",
    "de-DE": "Deutsch",
    "fr-FR": "Français",
    "es-ES": "Español",
}


class ListenState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RESTARTING = "restarting"
    FINALIZING = "finalizing"


class TranscriptAssembler:
    """Accumulate on-device recognition output across recognizer restarts.

    Recognizers end their task on silence or a time limit. Each final
    result is kept as a segment, and while capture is still active the
    caller is told to start a new task. The trailing interim result is
    replaced by every partial update.
    """

    def __init__(self) -> None:
        self.state = ListenState.IDLE
        self.locale = "en-US"
        self._segments: list[str] = []
        self._interim = ""

    @property
    def active(self) -> bool:
        return self.state in {ListenState.LISTENING, ListenState.RESTARTING}

    def start(self, locale: str = "en-US") -> None:
        self.locale = locale
        self._segments = []
        self._interim = ""
        self.state = ListenState.LISTENING

    def partial(self, text: str) -> None:
        if self.active:
            self._interim = text

    def final(self, text: str) -> bool:
        """Record a finished recognizer task. Returns True if a restart is due."""

        if text.strip():
            self._segments.append(text)
        self._interim = ""
        if self.active:
            self.state = ListenState.RESTARTING
            return True
        return False

    def recognizer_failed(self, *, recoverable: bool) -> bool:
        if self.active and recoverable:
            self.state = ListenState.RESTARTING
            return True
        return False

    def restarted(self) -> None:
        if self.state == ListenState.RESTARTING:
            self.state = ListenState.LISTENING

    def stop(self) -> None:
        if self.active:
            self.state = ListenState.FINALIZING

    def assemble(self) -> str:
        parts = [segment.strip() for segment in self._segments if segment.strip()]
        if self._interim.strip():
            parts.append(self._interim.strip())
        return " ".join(parts)

    def finish(self) -> str:
        text = self.assemble()
        self.state = ListenState.IDLE
        self._segments = []
        self._interim = ""
        return text


def assemble_segments(segments: Iterable[str], *, locale: str = "en-US") -> str:
    """Join recognizer results captured one task at a time.

    Each item is the final text of one recognizer task; the tasks are
    replayed through a TranscriptAssembler the way a live capture would
    restart between them.
    """

    assembler = TranscriptAssembler()
    assembler.start(locale)
    for segment in segments:
        if assembler.final(segment):
            assembler.restarted()
    assembler.stop()
    return assembler.finish()
