import argparse
import json
import sys
from pathlib import Path

from . import __version__
from .config import VerifierConfig
from .models import Verdict
from .retry import RetryError, exponential_backoff
from .scoring import score_names
from .service import VerificationService
from .sources.common import RetrievalError, parse_results_table
from .sources.interactive import INTERACTIVE_FIELDS
from .sources.replay import REPLAY_FIELDS

LAYOUTS = {"interactive": INTERACTIVE_FIELDS, "replay": REPLAY_FIELDS}


def _request_from_args(args: argparse.Namespace) -> dict:
    raw = {}
    if args.cedula:
        raw["cedula"] = args.cedula
    if args.name:
        raw["nombreCompleto"] = args.name
    else:
        if args.nombres:
            raw["nombres"] = args.nombres
        if args.apellidos:
            raw["apellidos"] = args.apellidos
    return raw


def verify_with_retries(service: VerificationService, raw: dict, retries: int, base_delay: float) -> Verdict:
    """Retry retryable failures with exponential backoff; the service itself never retries."""

    def on_retry(attempt, exc, delay):
        print(f"[retry {attempt}/{retries}] {exc} (waiting {delay:.0f}s)", file=sys.stderr)

    @exponential_backoff(max_retries=retries, base_delay=base_delay,
                         exceptions=(RetrievalError,), on_retry=on_retry)
    def attempt() -> Verdict:
        verdict = service.verify(raw)
        if not verdict.ok and verdict.retryable:
            raise RetrievalError(verdict.reason or "Registry lookup failed", retryable=True)
        return verdict

    try:
        return attempt()
    except RetryError as e:
        return Verdict.failure(str(e.__cause__ or e), error="retrieval", retryable=True)


def print_verdict(verdict: Verdict) -> None:
    if verdict.exists:
        record = verdict.matched_record or {}
        print(f"Exists: yes (score {verdict.match.score:.4f} >= {verdict.match.threshold})")
        for key, value in record.items():
            print(f"  {key}: {value}")
    else:
        print("Exists: no")
        if verdict.match:
            print(f"  Best score: {verdict.match.score:.4f} (threshold {verdict.match.threshold})")
        if verdict.suggestion:
            print(f"  Suggestion: {verdict.suggestion.record.get('name', '')} ({verdict.suggestion.score:.4f})")
    print(f"Candidates: {verdict.candidates}")
    for note in verdict.diagnostics:
        print(f"[diagnostic] {note}")


def cmd_verify(args: argparse.Namespace) -> None:
    try:
        config = VerifierConfig.from_env(
            source=args.source,
            threshold=args.threshold,
            debug=True if args.debug else None,
        )
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}")
    service = VerificationService(config)
    verdict = verify_with_retries(service, _request_from_args(args), args.retries, args.retry_delay)
    if config.debug:
        service.logger.log_metrics_summary()

    if args.json:
        print(json.dumps(verdict.to_dict(), indent=2, ensure_ascii=False))
        if not verdict.ok:
            raise SystemExit(2)
        return
    if not verdict.ok:
        raise SystemExit(verdict.reason)
    print_verdict(verdict)


def cmd_score(args: argparse.Namespace) -> None:
    result = score_names(args.query, args.candidate)
    print(f"Score: {result.score:.4f}")
    print(f"Method: {', '.join(result.method)}")
    for key, value in result.breakdown.items():
        print(f"  {key}: {value}")


def cmd_parse(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    html = input_path.read_text(encoding="utf-8", errors="replace")
    records = parse_results_table(html, LAYOUTS[args.layout])
    if not records:
        print("No result rows found.")
        return
    print(f"Found {len(records)} rows:\n")
    for record in records:
        print(json.dumps(record, ensure_ascii=False))


def main():
    parser = argparse.ArgumentParser(prog="exequatur", description="Verify a physician against the exequatur registry")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    ver = subparsers.add_parser("verify", help="Look a person up in the registry and decide if they are listed")
    ver.add_argument("--cedula", help="Identity number (digits; dashes allowed)")
    ver.add_argument("--name", help="Full name, e.g. \"Juan Perez\"")
    ver.add_argument("--nombres", help="Given names (alternative to --name)")
    ver.add_argument("--apellidos", help="Surnames (alternative to --name)")
    ver.add_argument("--source", choices=["interactive", "replay"], help="Retrieval strategy (default from EXEQUATUR_SOURCE)")
    ver.add_argument("--threshold", type=float, help="Decision threshold override")
    ver.add_argument("--retries", type=int, default=0, help="Retries for retryable failures (default 0)")
    ver.add_argument("--retry-delay", type=float, default=5.0, help="Initial delay between retries in seconds")
    ver.add_argument("--json", action="store_true", help="Print the verdict as JSON")
    ver.add_argument("--debug", action="store_true", help="Verbose logging")
    ver.set_defaults(func=cmd_verify)

    sc = subparsers.add_parser("score", help="Score two names with the matcher's similarity formula")
    sc.add_argument("query", help="Query name")
    sc.add_argument("candidate", help="Registry name")
    sc.set_defaults(func=cmd_score)

    prs = subparsers.add_parser("parse", help="Parse a saved registry results page")
    prs.add_argument("--input", required=True, help="Path to a saved HTML page")
    prs.add_argument("--layout", choices=sorted(LAYOUTS), default="replay", help="Column layout used when headers are unusable")
    prs.set_defaults(func=cmd_parse)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
