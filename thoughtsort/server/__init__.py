from __future__ import annotations

from .store import RemoteStore

__all__ = ["RemoteStore"]
