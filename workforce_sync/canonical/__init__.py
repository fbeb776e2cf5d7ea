"""
CANONICAL IDENTITY COMPONENTS

Normalization, deterministic ids, the per-operation identity index and the
matcher. Everything that compares a spreadsheet name with a stored identity
goes through here.
"""

from .id_utils import deterministic_id
from .identity_index import IdentityIndex, build_identity_index
from .matcher import PersonMatcher, match_person
from .normalization import normalize_cost_center, normalize_name

__all__ = [
    'deterministic_id',
    'IdentityIndex',
    'build_identity_index',
    'PersonMatcher',
    'match_person',
    'normalize_cost_center',
    'normalize_name',
]
