"""
Deterministic hashing for query fingerprints.

A query's fingerprint is the SHA-256 of its rendered SQL and its bound
parameter values. The fingerprint keys the per-graph query cache, so two
builders that would send the same statement with the same values share one
materialized result.

Manifesto:
    Hashing must be:
    - **Deterministic:** Same inputs → same output, always
    - **Order-dependent:** (a, b) ≠ (b, a)
    - **Type-agnostic:** Converts everything to strings

Examples:
    >>> compute_hash('SELECT * FROM "Users"', "p0 => 1") == compute_hash('SELECT * FROM "Users"', "p0 => 1")
    True
    >>> len(compute_hash("x", length=16))
    16

Tags:
    hashing, fingerprint, cache-key, keystone-core
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    String representations are joined with ``|`` and hashed with SHA-256.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def compute_query_hash(sql: str, params: Mapping[str, Any], length: int = 32) -> str:
    """Fingerprint a statement: its SQL followed by one ``key => value`` line per parameter."""
    lines = [f"{key} => {params[key]!r}" for key in params]
    return compute_hash(sql, *lines, length=length)


__all__ = [
    "compute_hash",
    "compute_query_hash",
]
