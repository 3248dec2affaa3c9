from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..vectors import mean_vector, running_mean

if TYPE_CHECKING:
    from ..server.store import RemoteStore

logger = logging.getLogger(__name__)


class CentroidMaintainer:
    """Keeps each category centroid equal to the mean of its members' embeddings."""

    def __init__(self, store: RemoteStore) -> None:
        self.store = store

    def update(self, category_id: str, embedding: Sequence[float] | None) -> list[float] | None:
        """Fold a new member into the centroid.

        Must run before the member's entry row is inserted: the stored
        entry_count is the pre-insert member count used as the mean's weight.
        """

        category = self.store.get_category(category_id)
        if category is None:
            logger.warning(
                "centroid update for unknown category", extra={"category_id": category_id}
            )
            return None
        current = category.embedding_centroid
        if not embedding:
            return current
        if not current:
            updated = [float(v) for v in embedding]
        elif len(current) != len(embedding):
            logger.warning(
                "centroid dimension mismatch; leaving centroid unchanged",
                extra={
                    "category_id": category_id,
                    "centroid_dim": len(current),
                    "embedding_dim": len(embedding),
                },
            )
            return current
        else:
            updated = running_mean(current, embedding, category.entry_count)
        self.store.set_centroid(category_id, updated)
        return updated

    def recompute_on_removal(self, category_id: str, removed_entry_id: str) -> list[float] | None:
        embeddings = self.store.member_embeddings(category_id, exclude_entry_id=removed_entry_id)
        centroid = mean_vector(embeddings)
        self.store.set_centroid(category_id, centroid)
        return centroid
