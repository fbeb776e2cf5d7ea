"""
PERSON MATCHING

Resolves a loosely formatted (name, cost center) pair against an
``IdentityIndex``:

1. exact lookup on (normalized name, normalized cc)  -> matched
2. fallback on normalized name alone:
     no candidate   -> unmatched
     one candidate  -> matched
     several        -> ambiguous

A wrong automatic match corrupts downstream weekly data, so nothing fuzzy
happens here and ambiguous rows are never resolved by picking one.
"""

from __future__ import annotations

from typing import Any

from ..errors import MatchAmbiguous, MatchUnmatched
from ..models import MatchResult, MatchStatus
from .identity_index import IdentityIndex
from .normalization import name_cc_key, normalize_cost_center, normalize_name


def match_person(person: Any, cc: Any, index: IdentityIndex) -> MatchResult:
    """Pure function of the index and the inputs."""
    name_key = normalize_name(person)
    if not name_key:
        return MatchResult.unmatched()
    cc_key = normalize_cost_center(cc)

    key = name_cc_key(name_key, cc_key)
    if key in index.colliding_keys:
        return MatchResult.ambiguous()

    exact = index.by_name_cc.get(key)
    if exact:
        return MatchResult.matched(exact)

    candidates = index.candidates(name_key)
    if not candidates:
        return MatchResult.unmatched()
    if len(candidates) == 1:
        return MatchResult.matched(next(iter(candidates)))
    return MatchResult.ambiguous()


class PersonMatcher:
    """
    Index-bound matcher.

    Usage:
        matcher = PersonMatcher(await build_identity_index(store, "employees"))
        result = matcher.match("Müller, Hans", "DE-01")
    """

    def __init__(self, index: IdentityIndex):
        self.index = index

    def match(self, person: Any, cc: Any = None) -> MatchResult:
        return match_person(person, cc, self.index)

    def resolve(self, person: Any, cc: Any = None) -> str:
        """Return the person id or raise for ambiguous/unmatched input."""
        result = self.match(person, cc)
        if result.status is MatchStatus.AMBIGUOUS:
            raise MatchAmbiguous(str(person), str(cc or ""))
        if result.status is MatchStatus.UNMATCHED:
            raise MatchUnmatched(str(person), str(cc or ""))
        return result.person_id
