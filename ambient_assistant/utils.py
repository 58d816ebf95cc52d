"""Utilities shared across assistant modules."""

from __future__ import annotations

import hashlib
import json
import random
import re
import string
from datetime import datetime, timezone
from typing import Iterable, List, Sequence

_ID_ALPHABET = string.ascii_lowercase + string.digits
_WHITESPACE = re.compile(r"\s+")


def generate_id(prefix: str, *, size: int = 8) -> str:
    """Generate a short unique identifier with a readable prefix."""

    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(size))
    return f"{prefix}_{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_text(text: str) -> str:
    """Collapse whitespace so cosmetic OCR jitter does not change the hash."""

    return _WHITESPACE.sub(" ", text).strip()


def content_hash(text: str) -> str:
    """Stable digest of extracted screen text."""

    normalized = normalize_text(text)
    return hashlib.sha256(normalized.encode("utf-8", errors="ignore")).hexdigest()


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """Word-set similarity in [0, 1]; two empty texts are identical."""

    words_a = set(text_a.lower().split())
    words_b = set(text_b.lower().split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def hour_in_window(hour: int, start: int, end: int) -> bool:
    """Return True when ``hour`` falls in ``[start, end)``, wrapping past midnight.

    An empty window (``start == end``) never matches.
    """

    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords if keyword)


def serialize_list(values: Sequence[str]) -> str:
    """Serialize a string list to JSON for persistence."""

    return json.dumps(list(values), ensure_ascii=False)


def deserialize_list(serialized: str | None) -> List[str]:
    """Read a string list from stored JSON text."""

    if not serialized:
        return []
    return list(json.loads(serialized))
