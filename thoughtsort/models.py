from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING_CREATE = "pendingCreate"
    PENDING_UPDATE = "pendingUpdate"
    PENDING_DELETE = "pendingDelete"


@dataclass
class Category:
    id: str
    user_id: str
    name: str
    entry_count: int = 0
    embedding_centroid: list[float] | None = None
    is_archived: bool = False
    is_user_created: bool = False
    created_at: str = ""
    last_updated: str = ""
    latest_entry_title: str | None = None
    note_body: str = ""
    # Client-side only; never sent over the wire.
    sync_status: SyncStatus = SyncStatus.SYNCED
    local_rev: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "entry_count": self.entry_count,
            "embedding_centroid": self.embedding_centroid,
            "is_archived": self.is_archived,
            "is_user_created": self.is_user_created,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
            "latest_entry_title": self.latest_entry_title,
            "note_body": self.note_body,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Category:
        centroid = data.get("embedding_centroid")
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id") or ""),
            name=str(data.get("name") or ""),
            entry_count=int(data.get("entry_count") or 0),
            embedding_centroid=[float(v) for v in centroid] if centroid else None,
            is_archived=bool(data.get("is_archived")),
            is_user_created=bool(data.get("is_user_created")),
            created_at=str(data.get("created_at") or ""),
            last_updated=str(data.get("last_updated") or ""),
            latest_entry_title=data.get("latest_entry_title"),
            note_body=str(data.get("note_body") or ""),
        )


@dataclass
class Entry:
    id: str
    user_id: str
    transcript: str
    title: str = ""
    category_id: str | None = None
    category_name: str | None = None
    embedding_vector: list[float] | None = None
    locale: str = "en-US"
    created_at: str = ""
    is_pending: bool = True
    seen_at: str | None = None
    audio_url: str | None = None
    # Client-side only.
    audio_local_path: str | None = None
    sync_status: SyncStatus = SyncStatus.SYNCED
    local_rev: int = 0

    @property
    def is_unseen(self) -> bool:
        return self.is_pending and self.seen_at is None

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "transcript": self.transcript,
            "title": self.title,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "embedding_vector": self.embedding_vector,
            "locale": self.locale,
            "created_at": self.created_at,
            "is_pending": self.is_pending,
            "seen_at": self.seen_at,
            "audio_url": self.audio_url,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Entry:
        vector = data.get("embedding_vector")
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id") or ""),
            transcript=str(data.get("transcript") or ""),
            title=str(data.get("title") or ""),
            category_id=data.get("category_id"),
            category_name=data.get("category_name"),
            embedding_vector=[float(v) for v in vector] if vector else None,
            locale=str(data.get("locale") or "en-US"),
            created_at=str(data.get("created_at") or ""),
            is_pending=bool(data.get("is_pending", True)),
            seen_at=data.get("seen_at"),
            audio_url=data.get("audio_url"),
        )


@dataclass
class ClassificationResult:
    formatted_transcript: str
    title: str
    category: str
    is_explicit_placement: bool = False
    confidence_score: float = 0.0
    category_reason: str | None = None
    suggested_new_category: str | None = None
    new_category_explanation: str | None = None


@dataclass
class CategoryMatch:
    id: str
    name: str
    similarity: float


@dataclass
class ResolvedCategory:
    category_id: str
    is_new: bool


@dataclass
class IngestionRequest:
    user_id: str
    transcript: str = ""
    locale: str = "en-US"
    category_id: str | None = None
    audio_path: str | None = None
    entry_id: str | None = None
    created_at: str | None = None


@dataclass
class ProcessEntryResult:
    entry: Entry
    category: Category
    is_new_category: bool
    classification: ClassificationResult | None = field(default=None, repr=False)

    def to_wire(self) -> dict[str, Any]:
        return {
            "entry": self.entry.to_wire(),
            "category": self.category.to_wire(),
            "is_new_category": self.is_new_category,
        }
