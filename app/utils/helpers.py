"""
Common utility functions and helpers.
"""
from typing import Set
import re

# Function words ignored when comparing question texts
_QUESTION_STOPWORDS = {
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
    'be', 'do', 'does', 'did', 'what', 'which', 'who', 'whom', 'how',
    'why', 'when', 'where', 'this', 'that', 'these', 'those', 'it', 'its',
}

_WORD_RE = re.compile(r"[a-z0-9]+")


def normalize_whitespace(text: str) -> str:
    """
    Collapse runs of whitespace into single spaces.

    Args:
        text: Raw text string

    Returns:
        Text with single spaces and no leading/trailing whitespace
    """
    return re.sub(r'\s+', ' ', text).strip()


def normalize_answer(answer: str) -> str:
    """Case-fold and trim an answer for exact comparison."""
    return answer.strip().lower()


def _stem(token: str) -> str:
    # Plural folding only: "causes" -> "cause", "classes" stays
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def question_tokens(text: str) -> Set[str]:
    """
    Bag-of-words token set of a question for near-duplicate detection.

    Lowercases, drops punctuation and function words, and folds plurals.
    Falls back to the raw word set when every word is a function word.

    Args:
        text: Question text

    Returns:
        Set of normalised tokens
    """
    words = _WORD_RE.findall(text.lower())
    content = {_stem(w) for w in words if w not in _QUESTION_STOPWORDS}
    return content or set(words)


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    """
    Jaccard similarity of two token sets.

    Args:
        a: First token set
        b: Second token set

    Returns:
        |a ∩ b| / |a ∪ b|, 0.0 when both sets are empty
    """
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def count_words(text: str) -> int:
    """Whitespace word count."""
    return len(text.split())


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
