from __future__ import annotations

import json
import logging
import math
from collections.abc import Sequence

logger = logging.getLogger(__name__)


def same_dimension(a: Sequence[float] | None, b: Sequence[float] | None) -> bool:
    if not a or not b:
        return False
    return len(a) == len(b)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"dimension mismatch: {len(a)} != {len(b)}")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def running_mean(centroid: Sequence[float], embedding: Sequence[float], count: int) -> list[float]:
    """Fold one more member into a mean that currently covers ``count`` members."""

    if len(centroid) != len(embedding):
        raise ValueError(f"dimension mismatch: {len(centroid)} != {len(embedding)}")
    n = max(0, int(count))
    return [(c * n + e) / (n + 1) for c, e in zip(centroid, embedding, strict=True)]


def mean_vector(vectors: Sequence[Sequence[float]]) -> list[float] | None:
    if not vectors:
        return None
    dim = len(vectors[0])
    totals = [0.0] * dim
    used = 0
    for vector in vectors:
        if len(vector) != dim:
            continue
        for i, value in enumerate(vector):
            totals[i] += value
        used += 1
    return [total / used for total in totals]


def dump_vector(vector: Sequence[float] | None) -> str | None:
    if vector is None:
        return None
    return json.dumps([float(v) for v in vector])


def load_vector(raw: str | bytes | None) -> list[float] | None:
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("discarding malformed vector payload")
        return None
    if not isinstance(data, list) or not data:
        return None
    try:
        return [float(v) for v in data]
    except (TypeError, ValueError):
        logger.warning("discarding non-numeric vector payload")
        return None
