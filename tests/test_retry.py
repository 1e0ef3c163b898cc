"""
Tests for retry classification of registry failures and caller-side backoff.
"""

import pytest
import requests

from exequatur.retry import RetryError, exponential_backoff, is_transient_error, should_retry_http_status
from exequatur.schema import ValidationError
from exequatur.sources.common import RetrievalError, fetch_with_error_handling
from tests.conftest import APP_URL, FakeResponse, FakeSession


def fetch(outcome, logger):
    session = FakeSession({("GET", APP_URL): outcome})
    return fetch_with_error_handling(session, "GET", APP_URL, "replay", logger)


class TestRegistryFailureClassification:
    """Which registry failures come back flagged as worth another attempt."""

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_overload_statuses_are_retryable(self, status, quiet_logger):
        with pytest.raises(RetrievalError) as exc:
            fetch(FakeResponse("busy", status_code=status, url=APP_URL), quiet_logger)
        assert exc.value.kind == "http"
        assert exc.value.retryable

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410])
    def test_client_errors_are_final(self, status, quiet_logger):
        with pytest.raises(RetrievalError) as exc:
            fetch(FakeResponse("nope", status_code=status, url=APP_URL), quiet_logger)
        assert exc.value.status == status
        assert not exc.value.retryable

    def test_read_timeout(self, quiet_logger):
        with pytest.raises(RetrievalError) as exc:
            fetch(requests.exceptions.ReadTimeout("read timed out"), quiet_logger)
        assert exc.value.kind == "timeout"
        assert exc.value.retryable

    def test_dropped_connection(self, quiet_logger):
        with pytest.raises(RetrievalError) as exc:
            fetch(requests.exceptions.ConnectionError("Connection reset by peer"), quiet_logger)
        assert exc.value.kind == "transport"
        assert exc.value.retryable

    def test_malformed_url_is_final(self, quiet_logger):
        error = requests.exceptions.InvalidURL("Invalid URL 'consulta': No scheme supplied")
        with pytest.raises(RetrievalError) as exc:
            fetch(error, quiet_logger)
        assert exc.value.kind == "transport"
        assert not exc.value.retryable

    def test_message_markers(self):
        assert is_transient_error(OSError("Temporary failure in name resolution"))
        assert is_transient_error(Exception("502 Bad Gateway from upstream"))
        assert not is_transient_error(Exception("SSL: CERTIFICATE_VERIFY_FAILED"))

    def test_status_helper(self):
        assert should_retry_http_status(503)
        assert not should_retry_http_status(200)


class TestLookupBackoff:
    """Backoff around a lookup that raises RetrievalError."""

    def lookup_failing(self, times, error=None):
        calls = []

        def lookup():
            calls.append(1)
            if len(calls) <= times:
                raise error or RetrievalError("Registry request timed out. Try again later.",
                                              retryable=True, kind="timeout")
            return "verdict"

        return lookup, calls

    def test_recovers_after_transient_failures(self):
        lookup, calls = self.lookup_failing(2)
        waits = []
        wrapped = exponential_backoff(max_retries=3, base_delay=5.0, exceptions=(RetrievalError,),
                                      sleep=waits.append)(lookup)
        assert wrapped() == "verdict"
        assert len(calls) == 3
        assert waits == [5.0, 10.0]

    def test_waits_capped(self):
        lookup, _ = self.lookup_failing(10)
        waits = []
        wrapped = exponential_backoff(max_retries=4, base_delay=20.0, max_delay=45.0,
                                      exceptions=(RetrievalError,), sleep=waits.append)(lookup)
        with pytest.raises(RetryError):
            wrapped()
        assert waits == [20.0, 40.0, 45.0, 45.0]

    def test_exhaustion_keeps_last_failure(self):
        lookup, calls = self.lookup_failing(10)
        wrapped = exponential_backoff(max_retries=1, exceptions=(RetrievalError,), sleep=lambda s: None)(lookup)
        with pytest.raises(RetryError) as exc:
            wrapped()
        assert len(calls) == 2
        assert isinstance(exc.value.__cause__, RetrievalError)
        assert exc.value.__cause__.kind == "timeout"

    def test_zero_retries_runs_once(self):
        lookup, calls = self.lookup_failing(1)
        wrapped = exponential_backoff(max_retries=0, exceptions=(RetrievalError,), sleep=lambda s: None)(lookup)
        with pytest.raises(RetryError):
            wrapped()
        assert len(calls) == 1

    def test_other_errors_not_retried(self):
        lookup, calls = self.lookup_failing(1, error=ValidationError(["Provide a cedula or a full name to verify"]))
        wrapped = exponential_backoff(max_retries=3, exceptions=(RetrievalError,), sleep=lambda s: None)(lookup)
        with pytest.raises(ValidationError):
            wrapped()
        assert len(calls) == 1

    def test_on_retry_reports_attempts(self):
        lookup, _ = self.lookup_failing(2)
        seen = []
        exponential_backoff(max_retries=2, base_delay=1.0, exceptions=(RetrievalError,),
                            on_retry=lambda n, e, d: seen.append((n, e.kind, d)),
                            sleep=lambda s: None)(lookup)()
        assert seen == [(1, "timeout", 1.0), (2, "timeout", 2.0)]
