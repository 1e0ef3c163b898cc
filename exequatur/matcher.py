"""
Turns the registry's noisy candidate rows into an exists / not-found decision.

Every candidate is scored against the query name, ranked, and the top
score is compared with the decision threshold. Below the threshold the
best candidate may still be surfaced as a suggestion for human review.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .config import VerifierConfig
from .logger import StructuredLogger, get_logger
from .models import MatchCandidate, MatchInfo, RawRecord, Suggestion, Verdict
from .normalize import normalize_text
from .schema import Query
from .scoring import score_names
from .sources import RecordSource
from .sources.common import NAME, RetrievalError, digits_conflict, digits_match


@dataclass(frozen=True)
class MatchPolicy:
    threshold: float = 0.6
    suggestion_threshold: float = 0.5
    surface_suggestions: bool = True

    def __post_init__(self):
        if not 0.0 <= self.suggestion_threshold <= self.threshold <= 1.0:
            raise ValueError(
                "Thresholds must satisfy 0 <= suggestion_threshold <= threshold <= 1, "
                f"got {self.suggestion_threshold} and {self.threshold}"
            )

    @classmethod
    def from_config(cls, config: VerifierConfig) -> "MatchPolicy":
        return cls(
            threshold=config.threshold,
            suggestion_threshold=config.suggestion_threshold,
            surface_suggestions=config.surface_suggestions,
        )


def score_candidate(query: Query, query_name: str, record: RawRecord, position: int = 0) -> MatchCandidate:
    """
    Score one registry row against the query.

    Queries carrying a cedula are searched by cedula, so any row the
    registry returns is an identity hit unless its own cedula differs:
    matching digits give method "id_number", a row without a cedula
    column or value gives "id_search".
    """
    if digits_conflict(query.id_number, record):
        return MatchCandidate(record, 0.0, ("id_conflict",), {"id_conflict": 1.0}, position)

    result = score_names(query_name, record.get(NAME, ""))
    if query.id_number:
        signal = "id_number" if digits_match(query.id_number, record) else "id_search"
        method = (signal,) + tuple(m for m in result.method if m != "empty")
        return MatchCandidate(record, 1.0, method, {**result.breakdown, signal: 1.0}, position)
    return MatchCandidate(record, result.score, result.method, result.breakdown, position)


def rank_candidates(query: Query, records: Sequence[RawRecord]) -> List[MatchCandidate]:
    """Score every record; best first, ties kept in registry order."""
    query_name = normalize_text(query.full_name)
    scored = [score_candidate(query, query_name, r, i) for i, r in enumerate(records)]
    return sorted(scored, key=lambda c: -c.score)


def decide(ranked: Sequence[MatchCandidate], policy: MatchPolicy, diagnostics=()) -> Verdict:
    if not ranked:
        return Verdict(ok=True, exists=False, candidates=0, diagnostics=tuple(diagnostics))

    top = ranked[0]
    info = MatchInfo(score=top.score, method=top.method, threshold=policy.threshold)
    if top.score >= policy.threshold:
        return Verdict(
            ok=True,
            exists=True,
            matched_record=top.record,
            match=info,
            candidates=len(ranked),
            diagnostics=tuple(diagnostics),
        )

    suggestion = None
    if policy.surface_suggestions and top.score > policy.suggestion_threshold:
        suggestion = Suggestion(record=top.record, score=top.score)
    return Verdict(
        ok=True,
        exists=False,
        match=info,
        suggestion=suggestion,
        candidates=len(ranked),
        diagnostics=tuple(diagnostics),
    )


class MatchSelector:
    def __init__(
        self,
        source: RecordSource,
        policy: Optional[MatchPolicy] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.source = source
        self.policy = policy or MatchPolicy()
        self.logger = logger or get_logger()

    def select(self, query: Query) -> Verdict:
        try:
            fetched = self.source.fetch_candidates(query)
        except RetrievalError as e:
            self.logger.warning("Registry lookup failed", source=e.source, kind=e.kind, reason=str(e))
            return Verdict.failure(str(e), error="retrieval", retryable=e.retryable)

        ranked = rank_candidates(query, fetched.records)
        verdict = decide(ranked, self.policy, fetched.diagnostics)
        for note in fetched.diagnostics:
            self.logger.warning("Registry diagnostic", note=note)
        self.logger.info(
            "Registry match decided",
            exists=verdict.exists,
            candidates=len(ranked),
            score=verdict.match.score if verdict.match else None,
            threshold=self.policy.threshold,
        )
        return verdict
