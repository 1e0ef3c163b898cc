"""
Record sources: interchangeable ways of pulling candidate rows from the registry.

Both implement `fetch_candidates(query) -> FetchResult` and raise
RetrievalError on failure. Which one runs is a configuration choice.
"""

from typing import Optional, Protocol

from ..config import VerifierConfig
from ..logger import StructuredLogger
from ..models import FetchResult
from ..schema import Query
from .common import RetrievalError
from .interactive import InteractiveSource
from .replay import ProtocolReplaySource


class RecordSource(Protocol):
    name: str

    def fetch_candidates(self, query: Query) -> FetchResult:
        ...


SOURCE_TYPES = {
    "interactive": InteractiveSource,
    "replay": ProtocolReplaySource,
}


def build_source(config: VerifierConfig, logger: Optional[StructuredLogger] = None) -> RecordSource:
    return SOURCE_TYPES[config.source](config, logger=logger)


__all__ = [
    "RecordSource",
    "RetrievalError",
    "InteractiveSource",
    "ProtocolReplaySource",
    "build_source",
]
