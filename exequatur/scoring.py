"""
Multi-signal name similarity for registry candidates.

Combines token-set overlap, substring inclusion and a normalized edit
distance into a single deterministic confidence in [0, 1]. Token overlap
and inclusion dominate because registry entries routinely add or drop a
middle name or second surname.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from rapidfuzz.distance import Levenshtein

from .normalize import compact, name_tokens, normalize_text

# Weights inside the combined token score
JACCARD_WEIGHT = 0.5
QUERY_COVERAGE_WEIGHT = 0.35
CANDIDATE_COVERAGE_WEIGHT = 0.15

# Weights of the final sum
WEIGHTS = {
    "token_overlap": 0.4,
    "substring": 0.1,
    "compact_substring": 0.1,
    "token_inclusion": 0.3,
    "levenshtein_ratio": 0.1,
}

MIN_INCLUSION_TOKEN = 3


@dataclass(frozen=True)
class ScoreResult:
    score: float
    method: Tuple[str, ...]
    breakdown: Dict[str, float] = field(default_factory=dict)


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    return Levenshtein.distance(a, b)


def levenshtein_ratio(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def _tokens(s: str) -> List[str]:
    # A name made only of particles ("De La") still needs tokens to compare.
    return name_tokens(s, remove_particles=True) or name_tokens(s)


def _covered(tokens: List[str], others: List[str]) -> bool:
    long_tokens = [t for t in tokens if len(t) >= MIN_INCLUSION_TOKEN]
    pool = [o for o in others if len(o) >= MIN_INCLUSION_TOKEN]
    if not long_tokens or not pool:
        return False
    return all(any(t in o or o in t for o in pool) for t in long_tokens)


def token_inclusion(query_tokens: List[str], candidate_tokens: List[str]) -> bool:
    """True when every long token of one name is contained in (or contains) a token of the other."""
    return _covered(query_tokens, candidate_tokens) or _covered(candidate_tokens, query_tokens)


def score_names(query_name: str, candidate_name: str) -> ScoreResult:
    q_norm = normalize_text(query_name)
    c_norm = normalize_text(candidate_name)
    if not q_norm or not c_norm:
        return ScoreResult(score=0.0, method=("empty",), breakdown={})

    q_tokens = _tokens(q_norm)
    c_tokens = _tokens(c_norm)
    q_set, c_set = set(q_tokens), set(c_tokens)
    inter = len(q_set & c_set)
    union = len(q_set | c_set)

    jaccard = inter / union if union else 0.0
    query_coverage = inter / len(q_set) if q_set else 0.0
    candidate_coverage = inter / len(c_set) if c_set else 0.0
    token_score = (
        JACCARD_WEIGHT * jaccard
        + QUERY_COVERAGE_WEIGHT * query_coverage
        + CANDIDATE_COVERAGE_WEIGHT * candidate_coverage
    )

    q_compact, c_compact = compact(q_norm), compact(c_norm)
    signals = {
        "token_overlap": token_score,
        "substring": 1.0 if (q_norm in c_norm or c_norm in q_norm) else 0.0,
        "compact_substring": 1.0 if (q_compact in c_compact or c_compact in q_compact) else 0.0,
        "token_inclusion": 1.0 if token_inclusion(q_tokens, c_tokens) else 0.0,
        "levenshtein_ratio": levenshtein_ratio(q_norm, c_norm),
    }

    total = sum(WEIGHTS[name] * value for name, value in signals.items())
    total = round(min(1.0, max(0.0, total)), 4)

    method = tuple(
        name for name in WEIGHTS
        if name in ("token_overlap", "levenshtein_ratio") or signals[name] > 0
    )
    breakdown = {
        "jaccard": round(jaccard, 4),
        "query_coverage": round(query_coverage, 4),
        "candidate_coverage": round(candidate_coverage, 4),
        **{name: round(value, 4) for name, value in signals.items()},
    }
    return ScoreResult(score=total, method=method, breakdown=breakdown)
