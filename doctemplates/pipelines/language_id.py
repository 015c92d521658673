"""
Lightweight language identification.

Counts hits against a small set of very common English function words. Text
with more than ``min_hits`` hits is reported as "en", everything else as
"unknown". Good enough to tell English office documents apart from anything
else without shipping a model.
"""

import re
from typing import Dict, FrozenSet

COMMON_WORDS: Dict[str, FrozenSet[str]] = {
    "en": frozenset({
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    }),
}

UNKNOWN = "unknown"
_WORD_RE = re.compile(r"\b\w+\b")


def count_common_word_hits(text: str, language: str = "en") -> int:
    words = COMMON_WORDS.get(language, frozenset())
    return sum(1 for token in _WORD_RE.findall(text.lower()) if token in words)


def detect_language(text: str, min_hits: int = 10) -> str:
    """
    Detect the document language.

    Args:
        text: Extracted document text
        min_hits: Common-word hits required before a language is claimed

    Returns:
        ISO 639-1 code of the best language, or "unknown"
    """
    if not text or not text.strip():
        return UNKNOWN

    best_lang, best_hits = UNKNOWN, 0
    for lang in COMMON_WORDS:
        hits = count_common_word_hits(text, lang)
        if hits > best_hits:
            best_lang, best_hits = lang, hits

    if best_hits > min_hits:
        return best_lang
    return UNKNOWN
