import re
import unicodedata
from typing import List

# Connective words in Spanish personal names ("Maria de los Angeles", "Perez y Gomez").
PARTICLES = frozenset({"de", "del", "la", "las", "los", "el", "y"})

_SEPARATORS = re.compile(r"[.,\-\s]+")
_DISALLOWED = re.compile(r"[^a-z0-9 ]")
_NON_DIGITS = re.compile(r"\D")


def collapse_whitespace(s: str) -> str:
    return " ".join((s or "").split())


def normalize_text(s: str) -> str:
    """Lowercase, strip diacritics and punctuation, collapse whitespace."""
    if not s:
        return ""
    s = unicodedata.normalize("NFD", s.lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = _SEPARATORS.sub(" ", s)
    s = _DISALLOWED.sub("", s)
    return collapse_whitespace(s)


def name_tokens(s: str, remove_particles: bool = False) -> List[str]:
    tokens = normalize_text(s).split()
    if remove_particles:
        tokens = [t for t in tokens if t not in PARTICLES]
    return tokens


def compact(s: str) -> str:
    return normalize_text(s).replace(" ", "")


def digits_only(s: str) -> str:
    return _NON_DIGITS.sub("", str(s or ""))
