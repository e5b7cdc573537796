"""Deterministic text helpers shared by the chunker and the retriever.

Token counts are a character-length estimate (``ceil(len / 4)``), which is
deterministic and close enough for budget enforcement; exact tokenizer
parity is not needed anywhere in the pipeline.

Heuristic chunk metadata (title, summary, keywords) is derived from the
chunk text itself when no LLM segmentation is used.
"""

from __future__ import annotations

import bisect
import math
import re
from collections import Counter

CHARS_PER_TOKEN = 4

TITLE_WORDS = 7
SUMMARY_WORDS = 25
MAX_KEYWORDS = 7

_WORD_RE = re.compile(r"\b\w+\b")

STOPWORDS: frozenset[str] = frozenset({
    "the", "and", "for", "are", "with", "this", "that", "from", "have",
    "has", "was", "were", "been", "will", "shall", "can", "could", "would",
    "should", "on", "in", "at", "of", "to", "a", "an", "is", "it", "as", "by",
    "we", "you", "your", "our", "their", "there", "be", "or", "but", "if",
})


def estimate_tokens(text: str) -> int:
    """Return the estimated token count of *text*."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def heuristic_title(text: str) -> str:
    """Return the first few words of *text* as a section title."""
    return " ".join(text.split()[:TITLE_WORDS])


def heuristic_summary(text: str) -> str:
    """Return the first sentence-ish span of *text* as a summary."""
    return " ".join(text.split()[:SUMMARY_WORDS])


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Return the most frequent non-stopword terms of *text*.

    Words of two characters or fewer are ignored.  Ties keep first-seen
    order, so the result is deterministic for a given input.
    """
    words = _WORD_RE.findall(text.lower())
    counts = Counter(w for w in words if len(w) > 2 and w not in STOPWORDS)
    return [word for word, _ in counts.most_common(limit)]


def infer_page_number(start_char: int, page_boundaries: list[int]) -> int | None:
    """Map a character offset to a 1-indexed page number.

    ``page_boundaries[i]`` is the cumulative character offset at the end of
    page ``i``.  The page is the first boundary strictly greater than
    *start_char*.

    Examples
    --------
    >>> infer_page_number(260, [100, 250, 400])
    3
    >>> infer_page_number(0, [100, 250, 400])
    1
    >>> infer_page_number(400, [100, 250, 400]) is None
    True
    """
    if not page_boundaries or start_char < 0:
        return None
    idx = bisect.bisect_right(page_boundaries, start_char)
    if idx >= len(page_boundaries):
        return None
    return idx + 1


def normalize_quotes(raw: str) -> str:
    """Replace typographic quotes that break ``json.loads``."""
    return (
        raw.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )
