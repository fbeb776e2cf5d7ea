"""
Operation-scoped identity index.

Built from a full scan of the employee master collection at the start of every
ingestion run and thrown away afterwards. The index is immutable once built;
pass it by value to the matcher instead of keeping it around.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from ..logging_config import get_logger
from .normalization import (
    display_name,
    name_cc_key,
    normalize_cost_center,
    normalize_name,
)

if TYPE_CHECKING:
    from ..store import DocumentStore

logger = get_logger(__name__)


def identity_display_name(data: Mapping[str, Any]) -> str:
    """Display name of a master record: ``person`` or ``"last, first"``."""
    person = data.get("person")
    if person:
        return str(person)
    return display_name(str(data.get("lastName") or ""), str(data.get("firstName") or ""))


@dataclass(frozen=True)
class IdentityIndex:
    """
    Exact ``name|cc -> id`` map plus ``name -> {ids}`` for fallback matching.

    ``colliding_keys`` holds name|cc keys that more than one master document
    claims; those never resolve to a single id.
    """

    by_name_cc: Mapping[str, str]
    by_name: Mapping[str, frozenset[str]]
    colliding_keys: frozenset[str]
    size: int

    @classmethod
    def from_documents(cls, documents: Iterable[tuple[str, Mapping[str, Any]]]) -> "IdentityIndex":
        """Build from ``(doc_id, data)`` pairs of the master collection."""
        exact: dict[str, set[str]] = defaultdict(set)
        by_name: dict[str, set[str]] = defaultdict(set)
        size = 0

        for doc_id, data in documents:
            name_key = normalize_name(identity_display_name(data))
            if not name_key:
                continue
            cc_key = normalize_cost_center(data.get("cc"))
            exact[name_cc_key(name_key, cc_key)].add(doc_id)
            by_name[name_key].add(doc_id)
            size += 1

        colliding = frozenset(key for key, ids in exact.items() if len(ids) > 1)
        if colliding:
            logger.warning("identity_index_collisions", keys=sorted(colliding))

        return cls(
            by_name_cc=MappingProxyType({k: next(iter(v)) for k, v in exact.items() if len(v) == 1}),
            by_name=MappingProxyType({k: frozenset(v) for k, v in by_name.items()}),
            colliding_keys=colliding,
            size=size,
        )

    def candidates(self, normalized_name: str) -> frozenset[str]:
        return self.by_name.get(normalized_name, frozenset())


async def build_identity_index(store: "DocumentStore", collection: str) -> IdentityIndex:
    """Scan the master collection and return a fresh index."""
    documents = await store.all(collection)
    index = IdentityIndex.from_documents((doc.doc_id, doc.data) for doc in documents)
    logger.info(
        "identity_index_built",
        collection=collection,
        identities=index.size,
        names=len(index.by_name),
    )
    return index
