from typing import Any, Mapping, Optional

from .config import VerifierConfig
from .logger import StructuredLogger
from .matcher import MatchPolicy, MatchSelector
from .models import Verdict
from .schema import ValidationError, build_query
from .sources import RecordSource, build_source


class VerificationService:
    """
    Entry point for one exequatur verification per call.

    Validates the raw request, runs the configured record source through
    the match selector and always returns a Verdict; it never raises.
    Request-rate limiting and concurrency bounds belong to the caller.
    """

    def __init__(
        self,
        config: Optional[VerifierConfig] = None,
        source: Optional[RecordSource] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.config = config or VerifierConfig()
        self.logger = logger or StructuredLogger(
            name="exequatur.service",
            level=self.config.log_level,
            log_dir=self.config.log_dir,
            enable_file=self.config.log_dir is not None,
        )
        self.source = source or build_source(self.config, logger=self.logger)
        self.selector = MatchSelector(self.source, MatchPolicy.from_config(self.config), logger=self.logger)

    def verify(self, raw: Mapping[str, Any]) -> Verdict:
        try:
            query = build_query(raw)
        except ValidationError as e:
            self.logger.info("Rejected verification request", errors=e.errors)
            self.logger.record_verdict("error")
            return Verdict.failure(str(e), error="validation")

        self.logger.debug("Verifying", source=self.source.name, by_id=bool(query.id_number))
        try:
            verdict = self.selector.select(query)
        except Exception as e:
            self.logger.error("Unexpected failure during verification", error=repr(e))
            verdict = Verdict.failure(
                "Could not query the registry (site down or page changed).",
                error="retrieval",
                retryable=True,
            )

        if not verdict.ok:
            self.logger.record_verdict("error")
        elif verdict.exists:
            self.logger.record_verdict("exists")
        else:
            self.logger.record_verdict("not_found")
        return verdict
