from __future__ import annotations
import hashlib


def _norm(value: str | None) -> str:
    return " ".join((value or "").split()).lower()


def dedup_key(title: str | None, company: str | None, location: str | None = None) -> str:
    """Stable key for "the same posting": trimmed, lower-cased title|company[|location]."""
    parts = [_norm(title), _norm(company)]
    if location is not None:
        parts.append(_norm(location))
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
