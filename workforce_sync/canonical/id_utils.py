"""
Deterministic identity ids.

Canonical key for a person: (source type, normalized name, normalized cost center).

    id = sha1("employees|mueller, hans|de-01").hexdigest()

The same row uploaded twice therefore lands on the same document. If SHA-1 is
not usable in the running interpreter (FIPS builds can refuse it), a 64-bit
FNV-1a digest is used instead. Fallback ids differ from SHA-1 ids but are just
as stable within that runtime, which is all the dedup needs.
"""

from __future__ import annotations

import hashlib
from typing import Callable

from .normalization import normalize_cost_center, normalize_name

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_FNV64_MASK = 0xFFFFFFFFFFFFFFFF


def _sha1_hex(payload: bytes) -> str:
    return hashlib.sha1(payload, usedforsecurity=False).hexdigest()


def _fnv1a_hex(payload: bytes) -> str:
    value = _FNV64_OFFSET
    for byte in payload:
        value ^= byte
        value = (value * _FNV64_PRIME) & _FNV64_MASK
    return f"{value:016x}"


def _select_digest() -> tuple[Callable[[bytes], str], str]:
    try:
        _sha1_hex(b"")
    except (ValueError, AttributeError):
        return _fnv1a_hex, "fnv1a64"
    return _sha1_hex, "sha1"


_digest, DIGEST_NAME = _select_digest()


def canonical_key(source_type: str, name: str, cost_center: str) -> str:
    """Key tuple joined with ``|``; name and cc are normalized here."""
    return f"{source_type}|{normalize_name(name)}|{normalize_cost_center(cost_center)}"


def deterministic_id(source_type: str, name: str, cost_center: str) -> str:
    """Stable document id for a (source, name, cost center) triple."""
    return _digest(canonical_key(source_type, name, cost_center).encode("utf-8"))
