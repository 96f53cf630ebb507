"""lodestar_rag.catalog.lexical

Portable lexical matching and ranking.

Used by the catalog on databases without PostgreSQL full-text search. The
behaviour approximates ``plainto_tsquery('english', q)`` combined with
``ts_rank`` or ``ts_rank_cd``: query text is split into lower-cased word
tokens, English stop words are dropped, and a chunk matches only when it
contains every remaining term. Terms are not stemmed.

Functions
---------
tokenize
    Split text into lower-cased word tokens.
query_terms
    Distinct, stop-word-free terms of a query.
lexical_score
    Rank a text against a query, or ``None`` when it does not match.
"""

from __future__ import annotations

import math
import re

TOKEN_RE = re.compile(r"\w+", re.UNICODE)
RANK_FUNCTIONS = ("rank", "rank_cd")

# Weight PostgreSQL assigns to unlabelled lexemes.
DEFAULT_WEIGHT = 0.1
_ZETA_2 = math.pi ** 2 / 6

ENGLISH_STOP_WORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because
    been before being below between both but by can could did do does doing
    don down during each few for from further had has have having he her here
    hers herself him himself his how i if in into is it its itself just me
    more most my myself no nor not now of off on once only or other our ours
    ourselves out over own s same she should so some such t than that the
    their theirs them themselves then there these they this those through to
    too under until up very was we were what when where which while who whom
    why will with you your yours yourself yourselves
    """.split()
)


def tokenize(text: str) -> list[str]:
    return [t.lower() for t in TOKEN_RE.findall(text or "")]


def query_terms(query: str) -> list[str]:
    """Return distinct query terms in first-seen order, without stop words."""
    seen: dict[str, None] = {}
    for token in tokenize(query):
        if token not in ENGLISH_STOP_WORDS:
            seen.setdefault(token, None)
    return list(seen)


def _positions(terms: list[str], tokens: list[str]) -> dict[str, list[int]]:
    wanted = set(terms)
    positions: dict[str, list[int]] = {t: [] for t in terms}
    for i, token in enumerate(tokens):
        if token in wanted:
            positions[token].append(i)
    return positions


def _rank(positions: dict[str, list[int]]) -> float:
    # Each further occurrence of a term contributes less, 1/j^2 for the j-th.
    total = 0.0
    for occurrences in positions.values():
        tf = len(occurrences)
        total += sum(1.0 / (j * j) for j in range(1, tf + 1)) / _ZETA_2
    return DEFAULT_WEIGHT * total / len(positions)


def _covers(positions: dict[str, list[int]]) -> list[tuple[int, int]]:
    """Find successive minimal, non-overlapping spans holding every term."""
    events = sorted((p, term) for term, ps in positions.items() for p in ps)
    need = len(positions)
    covers: list[tuple[int, int]] = []
    counts: dict[str, int] = {}
    left = 0
    for right, (pos, term) in enumerate(events):
        counts[term] = counts.get(term, 0) + 1
        while len(counts) == need:
            left_pos, left_term = events[left]
            if counts[left_term] == 1:
                covers.append((left_pos, pos))
                counts = {}
                left = right + 1
                break
            counts[left_term] -= 1
            left += 1
    return covers


def _rank_cd(positions: dict[str, list[int]]) -> float:
    need = len(positions)
    total = 0.0
    for start, end in _covers(positions):
        span = end - start + 1
        total += 1.0 / max(1, span - need + 1)
    return DEFAULT_WEIGHT * total


def lexical_score(query: str, text: str, rank_function: str = "rank") -> float | None:
    """Score ``text`` against ``query``.

    Parameters
    ----------
    query : str
        Raw query text, parsed as an AND of its terms.
    text : str
        Candidate chunk text.
    rank_function : str, optional
        ``"rank"`` or ``"rank_cd"``. Anything else falls back to ``"rank"``.

    Returns
    -------
    float or None
        A non-negative rank, or ``None`` when the query has no terms or the
        text misses any of them.
    """
    terms = query_terms(query)
    if not terms:
        return None

    positions = _positions(terms, tokenize(text))
    if any(not occurrences for occurrences in positions.values()):
        return None

    if rank_function == "rank_cd":
        return _rank_cd(positions)
    return _rank(positions)
