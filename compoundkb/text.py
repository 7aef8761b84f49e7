"""Text normalization and similarity shared by dedup and retrieval.

The similarity score is a weighted composite of token overlap (Jaccard) and
character-level edit similarity (difflib's ratio) over normalized text. It is
symmetric, lands in [0, 1], and is 0.0 whenever either side is empty.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher

TOKEN_WEIGHT = 0.6
EDIT_WEIGHT = 0.4

STOP_WORDS = frozenset({
    "why", "did", "we", "the", "a", "an", "is", "are", "was", "were",
    "do", "does", "how", "what", "when", "where", "which", "who",
    "our", "their", "this", "that", "for", "with", "from", "about",
    "should", "would", "could", "have", "has", "had", "not", "and", "or",
    "but", "in", "on", "to", "of", "it", "its", "be", "been", "being",
    "at", "by", "as", "so", "then", "than", "there", "into", "after",
    "i", "me", "my", "you", "your", "us", "can", "will", "just",
})

_LINE_NUMBERS = re.compile(r"(?<=:)\d+|(?<=line )\d+")
_LONG_DIGITS = re.compile(r"\d{4,}")
_NON_WORD = re.compile(r"[^a-z0-9+_\s]+")
_SPACE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    """Lowercase, fold volatile numbers to ``n``, strip punctuation, collapse spaces.

    Line numbers and runs of four or more digits (ports, ids, timestamps)
    fold; short numbers such as status codes are kept. ``+`` survives so
    that ``N+1`` stays one token.
    """
    if not text:
        return ""
    lowered = _LINE_NUMBERS.sub("n", text.lower())
    lowered = _LONG_DIGITS.sub("n", lowered)
    lowered = _NON_WORD.sub(" ", lowered)
    return _SPACE.sub(" ", lowered).strip()


def tokenize(text: str | None) -> list[str]:
    """Meaningful words of ``text`` in order, stop words removed."""
    return [
        word
        for word in normalize(text).split()
        if len(word) > 1 and word not in STOP_WORDS and word.strip("+")
    ]


def jaccard(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def containment(query: set[str], doc: set[str]) -> float:
    """Fraction of query tokens present in the document."""
    if not query or not doc:
        return 0.0
    return len(query & doc) / len(query)


def similarity(a: str | None, b: str | None) -> float:
    """Composite token-overlap / edit-distance similarity."""
    norm_a, norm_b = normalize(a), normalize(b)
    if not norm_a or not norm_b:
        return 0.0
    token_score = jaccard(set(tokenize(norm_a)), set(tokenize(norm_b)))
    edit_score = SequenceMatcher(None, norm_a, norm_b).ratio()
    return TOKEN_WEIGHT * token_score + EDIT_WEIGHT * edit_score


def query_relevance(query: str, document_text: str) -> float:
    """How well ``document_text`` answers ``query``.

    Short queries against long documents score poorly on plain Jaccard, so
    containment of the query tokens carries the token side here. A document
    sharing no query token scores 0.
    """
    query_tokens = set(tokenize(query))
    doc_tokens = set(tokenize(document_text))
    covered = containment(query_tokens, doc_tokens)
    if covered == 0.0:
        return 0.0
    return TOKEN_WEIGHT * covered + EDIT_WEIGHT * similarity(query, document_text)


def build_fts_query(text: str) -> str:
    """Convert free text into an FTS5 query: quoted tokens joined with OR."""
    seen: list[str] = []
    for word in tokenize(text):
        if word not in seen:
            seen.append(word)
    return " OR ".join(f'"{word}"' for word in seen)


def first_sentence(text: str, limit: int = 200) -> str:
    """First sentence of ``text``, clipped to ``limit`` characters."""
    stripped = _SPACE.sub(" ", text.strip())
    match = re.search(r"(?<=[.!?])\s", stripped)
    sentence = stripped[: match.start()] if match else stripped
    if len(sentence) > limit:
        sentence = sentence[: limit - 3].rstrip() + "..."
    return sentence
