"""
Verifier configuration.

One immutable value threaded into VerificationService at construction.
Debug logging and relaxed TLS live here rather than in process-wide state.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

from .env import load_env

REGISTRY_URL = "https://sns.gob.do/herramientas-de-consulta/consulta-de-exequatur/"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
SOURCES = ("interactive", "replay")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class VerifierConfig:
    source: str = "interactive"
    registry_url: str = REGISTRY_URL
    application_url: Optional[str] = None

    page_load_timeout: float = 45.0
    settle_delay: float = 1.5
    results_delay: float = 3.5
    http_timeout: float = 20.0
    overall_timeout: float = 75.0

    insecure_hosts: Tuple[str, ...] = ()
    # Hosts (and their subdomains) preferred when picking the embedded application frame.
    frame_hosts: Tuple[str, ...] = ("gob.do",)

    threshold: float = 0.6
    suggestion_threshold: float = 0.5
    surface_suggestions: bool = True

    headless: bool = True
    debug: bool = False
    log_dir: Optional[Path] = None

    search_field: Optional[str] = None
    submit_field: Optional[str] = None
    submit_value: Optional[str] = None
    state_field: str = "__VIEWSTATE"
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ValueError(f"Unknown source '{self.source}'. Use one of: {', '.join(SOURCES)}")
        if not 0.0 <= self.suggestion_threshold <= self.threshold <= 1.0:
            raise ValueError(
                "Thresholds must satisfy 0 <= suggestion_threshold <= threshold <= 1, "
                f"got {self.suggestion_threshold} and {self.threshold}"
            )
        for name in ("page_load_timeout", "http_timeout", "overall_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for name in ("settle_delay", "results_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        object.__setattr__(self, "insecure_hosts", tuple(h.lower() for h in self.insecure_hosts))
        object.__setattr__(self, "frame_hosts", tuple(h.lower().lstrip(".") for h in self.frame_hosts))

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.debug else "INFO"

    def verify_tls(self, url: str) -> bool:
        """TLS is verified for every host except the explicitly listed legacy ones."""
        host = (urlparse(url).hostname or "").lower()
        return host not in self.insecure_hosts

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "VerifierConfig":
        """Build a config from EXEQUATUR_* variables, loading .env first."""
        if environ is None:
            load_env()
            environ = os.environ

        def get(name: str) -> Optional[str]:
            v = environ.get(f"EXEQUATUR_{name}")
            return v.strip() if v is not None and v.strip() != "" else None

        values = {}
        for key in ("source", "registry_url", "application_url", "search_field",
                    "submit_field", "submit_value", "state_field", "user_agent"):
            v = get(key.upper())
            if v is not None:
                values[key] = v
        for key in ("page_load_timeout", "settle_delay", "results_delay", "http_timeout",
                    "overall_timeout", "threshold", "suggestion_threshold"):
            v = get(key.upper())
            if v is not None:
                values[key] = _parse_float(key, v)
        for key in ("surface_suggestions", "headless", "debug"):
            v = get(key.upper())
            if v is not None:
                values[key] = _parse_bool(key, v)
        hosts = get("INSECURE_HOSTS")
        if hosts is not None:
            values["insecure_hosts"] = tuple(h.strip() for h in hosts.split(",") if h.strip())
        frame_hosts = get("FRAME_HOSTS")
        if frame_hosts is not None:
            values["frame_hosts"] = tuple(h.strip() for h in frame_hosts.split(",") if h.strip())
        log_dir = get("LOG_DIR")
        if log_dir is not None:
            values["log_dir"] = Path(log_dir)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _parse_float(key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"EXEQUATUR_{key.upper()} must be a number, got {value!r}")


def _parse_bool(key: str, value: str) -> bool:
    v = value.lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"EXEQUATUR_{key.upper()} must be a boolean, got {value!r}")
