"""Text helpers shared by keyword search, reranking and the clarity gate."""

from __future__ import annotations

import hashlib
import re
import unicodedata

_TOKEN_RE = re.compile(r"\w+", flags=re.UNICODE)

STOPWORDS: frozenset[str] = frozenset(
    {
        # es
        "a", "al", "con", "como", "cual", "de", "del", "el", "en", "es", "esta", "este",
        "la", "las", "lo", "los", "mas", "para", "por", "que", "se", "sin", "sobre", "su",
        "sus", "un", "una", "unos", "unas", "y", "o", "u", "e", "muy", "cada", "entre",
        # en
        "the", "and", "for", "with", "what", "how", "are", "this", "that", "from", "into",
        "about", "is", "of", "to", "in", "on", "an", "or",
    }
)


def normalize_text(text: str) -> str:
    """Casefolds and strips diacritics so 'Repetición' matches 'repeticion'."""
    decomposed = unicodedata.normalize("NFKD", str(text or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped.casefold()).strip()


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(normalize_text(text))


def content_terms(text: str, min_length: int = 3) -> list[str]:
    """Distinct non-stopword tokens, in first-seen order."""
    terms: list[str] = []
    seen: set[str] = set()
    for token in tokenize(text):
        if len(token) < min_length or token in STOPWORDS or token in seen:
            continue
        seen.add(token)
        terms.append(token)
    return terms


def term_matches(term: str, tokens: set[str], stem_length: int = 5) -> bool:
    """Exact token hit, or a shared prefix long enough to absorb plural/gender endings."""
    if term in tokens:
        return True
    stem = term[:stem_length]
    if len(stem) < 4:
        return False
    return any(token.startswith(stem) for token in tokens)


def stable_hash(text: str) -> str:
    return hashlib.sha256(str(text or "").encode("utf-8")).hexdigest()
