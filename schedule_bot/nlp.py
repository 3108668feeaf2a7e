"""Lightweight spaCy helpers for team-name matching."""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache

import spacy

# The blank English pipeline only ships a tokenizer, which is all we need and
# avoids downloading a statistical model at runtime.
_NLP = spacy.blank("en")
_TOKENIZER = _NLP.tokenizer

_NON_ALNUM = re.compile(r"[^0-9A-Za-z]+")
_SPACES = re.compile(r"\s+")


def canonical_team(value: str) -> str:
    """Upper-case a team name, dropping punctuation and collapsing spaces."""
    cleaned = _NON_ALNUM.sub(" ", value or "")
    return _SPACES.sub(" ", cleaned).strip().upper()


@lru_cache(maxsize=2048)
def token_forms(value: str) -> tuple[str, ...]:
    """Return normalized token variants for fuzzy name checks.

    The output includes the raw lower-case token and an alphanumeric-only
    variant of it.
    """

    doc = _TOKENIZER(value)
    forms: set[str] = set()
    for token in doc:
        raw = token.text.lower().strip()
        if not raw:
            continue
        forms.add(raw)

        alnum = "".join(char for char in raw if char.isalnum())
        if alnum:
            forms.add(alnum)

    return tuple(sorted(forms))


def shares_token(left: str, right: str, *, min_length: int = 3) -> bool:
    """True when both names contain a common alphabetic token."""
    left_forms = {
        form
        for form in token_forms(left)
        if len(form) >= min_length and any(char.isalpha() for char in form)
    }
    if not left_forms:
        return False
    return contains_any(token_forms(right), left_forms)


def contains_any(tokens: Iterable[str], candidates: set[str]) -> bool:
    return any(token in candidates for token in tokens)


__all__ = ["canonical_team", "contains_any", "shares_token", "token_forms"]
