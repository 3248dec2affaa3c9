from __future__ import annotations

import datetime as dt
from uuid import uuid4


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def new_id() -> str:
    return str(uuid4())


def parse_iso8601(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def language_code(locale: str | None) -> str:
    """Return the language part of a locale tag ("de-AT" -> "de")."""

    if not locale:
        return "en"
    code = locale.replace("_", "-").split("-", 1)[0].strip().lower()
    return code or "en"
