"""
Common utility functions and helpers.
"""
from typing import Any, Iterable, Optional
import hashlib
import math
import re

TRUNCATION_MARKER = "..."

_WHITESPACE = re.compile(r"\s+")


def max_chars_for_model(max_tokens: int, chars_per_token: int = 4) -> int:
    """
    Character cap derived from an embedding model's token ceiling.

    Args:
        max_tokens: Model input limit in tokens
        chars_per_token: Conservative characters-per-token multiplier

    Returns:
        Maximum number of characters to send to the model
    """
    return max(0, int(max_tokens) * int(chars_per_token))


def normalize_text(text: Any, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """
    Clean and length-bound text before embedding.

    Collapses runs of whitespace, trims, and caps the result at *max_chars*.
    Text over the cap is cut and suffixed with *marker* so that lossy
    encoding is detectable downstream.  The result never exceeds
    *max_chars* characters.  ``None`` and empty input yield ``""``.

    Args:
        text: Raw text (may be None, bytes, or any object with a str form)
        max_chars: Maximum length of the returned string
        marker: Suffix appended to truncated text

    Returns:
        Normalized text
    """
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    elif not isinstance(text, str):
        text = str(text)

    cleaned = _WHITESPACE.sub(" ", text).strip()
    limit = max(0, int(max_chars))
    if len(cleaned) <= limit:
        return cleaned

    if limit <= len(marker):
        return cleaned[:limit]
    return cleaned[:limit - len(marker)] + marker


def generate_hash(text: str) -> str:
    """
    Generate SHA256 hash of text.

    Args:
        text: Text to hash

    Returns:
        Hex digest of hash
    """
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def estimate_tokens(texts: Iterable[Optional[str]], chars_per_token: int = 4) -> int:
    """Approximate token count: ``sum(ceil(len(text) / chars_per_token))``."""
    return sum(math.ceil(len(t or "") / chars_per_token) for t in texts)


def estimate_cost(tokens: int, rate_per_1k_tokens: float) -> float:
    """Estimated USD cost of embedding *tokens* tokens."""
    return (tokens / 1000) * rate_per_1k_tokens


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Truncate text to maximum length, for log previews.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    text = text or ""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
