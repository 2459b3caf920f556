"""Text normalization utilities for titles, slugs and tag names."""

import re
import unicodedata

_WS_RE = re.compile(r"\s+", re.UNICODE)
_QUOTES_RE = re.compile(r"['\"‘’“”]")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def clean_text(value):
    """Collapse whitespace; non-strings become an empty string."""
    if not isinstance(value, str):
        return ""
    return _WS_RE.sub(" ", value).strip()


def slugify(value):
    """Build a URL-safe slug. Returns an empty string when nothing usable is left."""
    text = clean_text(value)
    if not text:
        return ""
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _QUOTES_RE.sub("", text.lower())
    return _NON_SLUG_RE.sub("-", text).strip("-")


def dedupe_casefold(values):
    """Drop blanks and case-insensitive duplicates, keeping first-seen order."""
    deduped = []
    seen = set()
    for raw in values:
        text = clean_text(raw)
        if not text:
            continue
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        deduped.append(text)
    return deduped
