"""Canonical keys for symmetric user pairs.

Every table keyed by an unordered pair (matches, conversations, friend
requests) stores ``(user_lo_id, user_hi_id)``.  Always derive the key here
before a write or a lookup so both orderings map to one row.
"""

from __future__ import annotations

import uuid


def canonical_pair(a: uuid.UUID, b: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
    if a == b:
        raise ValueError("A pair needs two distinct users")
    return (a, b) if a.int < b.int else (b, a)

