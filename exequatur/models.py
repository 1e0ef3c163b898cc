"""Value objects passed between the record sources, the matcher and callers."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

RawRecord = Mapping[str, str]


@dataclass(frozen=True)
class FetchResult:
    """Candidate rows returned by a record source plus operator diagnostics."""

    records: Tuple[RawRecord, ...] = ()
    diagnostics: Tuple[str, ...] = ()

    def __iter__(self) -> Iterator[RawRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class MatchCandidate:
    record: RawRecord
    score: float
    method: Tuple[str, ...]
    breakdown: Dict[str, float] = field(default_factory=dict)
    position: int = 0  # order in which the source returned the row


@dataclass(frozen=True)
class MatchInfo:
    score: float
    method: Tuple[str, ...]
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "method": list(self.method), "threshold": self.threshold}


@dataclass(frozen=True)
class Suggestion:
    """Best candidate below the decision threshold, surfaced for human review."""

    record: RawRecord
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"record": dict(self.record), "score": self.score}


@dataclass(frozen=True)
class Verdict:
    """
    Outcome of one verification.

    ok=False: nothing was decided (bad input or retrieval failure).
    ok=True, exists=False: decided, no candidate cleared the threshold.
    ok=True, exists=True: matched_record cleared the threshold.
    """

    ok: bool
    reason: Optional[str] = None
    error: Optional[str] = None  # "validation" or "retrieval" when ok is False
    exists: Optional[bool] = None
    matched_record: Optional[RawRecord] = None
    match: Optional[MatchInfo] = None
    suggestion: Optional[Suggestion] = None
    candidates: int = 0
    diagnostics: Tuple[str, ...] = ()
    retryable: bool = False

    @classmethod
    def failure(cls, reason: str, error: str, retryable: bool = False) -> "Verdict":
        return cls(ok=False, reason=reason, error=error, retryable=retryable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "reason": self.reason,
            "error": self.error,
            "exists": self.exists,
            "record": dict(self.matched_record) if self.matched_record is not None else None,
            "match": self.match.to_dict() if self.match else None,
            "suggestion": self.suggestion.to_dict() if self.suggestion else None,
            "candidates": self.candidates,
            "diagnostics": list(self.diagnostics),
            "retryable": self.retryable,
        }
