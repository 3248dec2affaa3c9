from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..fuzzy import fuzzy_match_category
from ..models import Category, ClassificationResult, ResolvedCategory
from .centroid import CentroidMaintainer

if TYPE_CHECKING:
    from ..server.store import RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.60
DEFAULT_MAX_CATEGORIES = 10


class CategoryResolver:
    """Decide which category a classified transcript lands in.

    Order of precedence:

    1. fuzzy match of the classifier's category name against ``existing``
    2. embedding similarity to a centroid (skipped for explicit placement)
    3. at the category cap, the closest category regardless of similarity
    4. a new category named by the classifier

    ``existing`` must be the user's non-archived categories ordered by
    descending entry count.
    """

    def __init__(
        self,
        store: RemoteStore,
        centroids: CentroidMaintainer | None = None,
        *,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_categories: int = DEFAULT_MAX_CATEGORIES,
    ) -> None:
        self.store = store
        self.centroids = centroids or CentroidMaintainer(store)
        self.similarity_threshold = similarity_threshold
        self.max_categories = max_categories

    def resolve(
        self,
        classification: ClassificationResult,
        existing: Sequence[Category],
        embedding: Sequence[float] | None,
        user_id: str,
    ) -> ResolvedCategory:
        name = classification.category.strip()
        matched = fuzzy_match_category(name, existing)
        if matched is not None:
            logger.debug("category resolved by name", extra={"category_id": matched.id})
            return self._assign(matched.id, embedding)

        at_cap = len(existing) >= self.max_categories
        if not classification.is_explicit_placement and existing and embedding:
            similar = self.store.match_category(embedding, user_id, self.similarity_threshold)
            if similar is not None and similar.similarity >= self.similarity_threshold:
                logger.debug(
                    "category resolved by similarity",
                    extra={"category_id": similar.id, "similarity": similar.similarity},
                )
                return self._assign(similar.id, embedding)

        if at_cap and existing:
            return self._assign(self._closest(existing, embedding, user_id), embedding)

        created = self.store.create_category(
            user_id,
            name,
            centroid=embedding,
            is_user_created=False,
        )
        logger.info(
            "created category", extra={"category_id": created.id, "category_name": created.name}
        )
        return ResolvedCategory(category_id=created.id, is_new=True)

    def _closest(
        self, existing: Sequence[Category], embedding: Sequence[float] | None, user_id: str
    ) -> str:
        if embedding:
            closest = self.store.match_category(embedding, user_id, 0.0)
            if closest is not None:
                return closest.id
        # No comparable centroid; fall back to the largest category.
        return existing[0].id

    def _assign(self, category_id: str, embedding: Sequence[float] | None) -> ResolvedCategory:
        self.centroids.update(category_id, embedding)
        return ResolvedCategory(category_id=category_id, is_new=False)
