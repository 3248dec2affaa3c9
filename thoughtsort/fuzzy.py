from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TypeVar

from .models import Category

_NON_WORD = re.compile(r"[^a-z0-9\s]")

MAX_EDIT_DISTANCE = 2
MAX_EDIT_RATIO = 0.3

C = TypeVar("C", bound=Category)


def name_tokens(name: str) -> list[str]:
    """Lowercase alphanumeric words of a category name ("Health & Fitness" -> [health, fitness])."""

    return _NON_WORD.sub("", name.lower()).split()


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def _contains(a: list[str], b: list[str]) -> bool:
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    pool = set(longer)
    return all(word in pool for word in shorter)


def fuzzy_match_category(name: str, categories: Sequence[C]) -> C | None:
    """Find the existing category a suggested name refers to.

    Three passes over ``categories`` in the given order, first hit wins:
    normalized exact match, word containment in either direction, and a
    small edit distance on the normalized names (catches plurals and typos).
    "Work" does not match "Workout" because containment compares whole words.
    """

    wanted = name_tokens(name)
    if not wanted:
        return None
    wanted_key = " ".join(wanted)
    candidates = [(cat, name_tokens(cat.name)) for cat in categories]
    candidates = [(cat, tokens) for cat, tokens in candidates if tokens]

    for cat, tokens in candidates:
        if " ".join(tokens) == wanted_key:
            return cat
    for cat, tokens in candidates:
        if _contains(wanted, tokens):
            return cat
    for cat, tokens in candidates:
        key = " ".join(tokens)
        dist = levenshtein(wanted_key, key)
        longest = max(len(wanted_key), len(key), 1)
        if dist <= MAX_EDIT_DISTANCE and dist / longest < MAX_EDIT_RATIO:
            return cat
    return None
