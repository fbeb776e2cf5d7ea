"""
Name and cost center normalization.

Every comparison between spreadsheet text and stored identities goes through
these functions. They are pure, total and idempotent:

    normalize_name("  MÜLLER,  Hans ")   -> "mueller, hans"
    normalize_name("Mueller, Hans")      -> "mueller, hans"
    normalize_cost_center("DE–01")       -> "de-01"
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

import pandas as pd

# German transliterations applied before the remaining diacritics are dropped
_TRANSLITERATIONS = {
    "ä": "ae",
    "ö": "oe",
    "ü": "ue",
    "ß": "ss",
}

# Hyphen, non-breaking hyphen, figure dash, en/em dash, horizontal bar,
# hyphen bullet, minus sign, small em dash
_DASH_VARIANTS = re.compile("[‐‑‒–—―⁃−﹘]")

_WHITESPACE = re.compile(r"\s+")
_COMMA_SPACING = re.compile(r"\s*,\s*")
_TRAILING_ID = re.compile(r"\([^)]*\)\s*$")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _fold(text: str) -> str:
    """Case-fold and strip combining marks until the text stops changing."""
    previous = None
    while text != previous:
        previous = text
        text = unicodedata.normalize("NFKD", text.casefold())
        text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return text


def clean_text(value: Any) -> str:
    """Shared base: transliterate, strip diacritics, case-fold, collapse whitespace."""
    if _is_blank(value):
        return ""
    text = unicodedata.normalize("NFC", str(value)).casefold()
    for source, target in _TRANSLITERATIONS.items():
        text = text.replace(source, target)
    text = _fold(text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_name(value: Any) -> str:
    """Normalize a display name such as ``"Müller, Hans"``."""
    text = clean_text(value)
    if not text:
        return ""
    return _COMMA_SPACING.sub(", ", text).strip()


def normalize_cost_center(value: Any) -> str:
    """Normalize a cost center code; dash variants become ``-``."""
    return _DASH_VARIANTS.sub("-", clean_text(value))


def name_cc_key(name: str, cc: str) -> str:
    """Composite key of already normalized parts."""
    return f"{name}|{cc}"


def strip_trailing_id(value: Any) -> str:
    """``"Müller, Hans (10023)"`` -> ``"Müller, Hans"``."""
    if _is_blank(value):
        return ""
    return _TRAILING_ID.sub("", str(value)).strip()


def display_name(last_name: str, first_name: str) -> str:
    """Build the ``"Last, First"`` display form used across all collections."""
    parts = [p.strip() for p in (last_name or "", first_name or "") if p and p.strip()]
    return ", ".join(parts)


def split_person_name(full_name: str) -> tuple[str, str]:
    """
    Split a display name into (last name, first name).

    Accepts ``"Last, First"`` and falls back to ``"First Last"``. A single
    token is treated as the last name.
    """
    trimmed = (full_name or "").strip()
    if not trimmed:
        return "", ""

    if "," in trimmed:
        last, first = trimmed.split(",", 1)
        if last.strip() and first.strip():
            return last.strip(), first.strip()

    tokens = trimmed.rsplit(None, 1)
    if len(tokens) == 2:
        return tokens[1].strip(), tokens[0].strip()

    return trimmed.rstrip(",").strip(), ""
