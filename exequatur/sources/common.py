"""Shared utilities for the registry record sources."""

import time
from typing import Callable, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from ..logger import StructuredLogger
from ..normalize import collapse_whitespace, digits_only, normalize_text
from ..retry import is_transient_error, should_retry_http_status

T = TypeVar("T")

# Canonical record fields
NAME = "name"
PROFESSION = "profession"
UNIVERSITY = "university"
REGISTRATION_NUMBER = "registration_number"
REGISTRATION_DATE = "registration_date"
FOLIO = "folio"
BOOK = "book"
DECREE_NUMBER = "decree_number"
ID_NUMBER = "id_number"

# Header keyword -> field, checked in order ("fecha registro" is a date, not a number).
HEADER_KEYWORDS: List[Tuple[str, str]] = [
    ("cedula", ID_NUMBER),
    ("decreto", DECREE_NUMBER),
    ("fecha", REGISTRATION_DATE),
    ("registro", REGISTRATION_NUMBER),
    ("exequatur", REGISTRATION_NUMBER),
    ("folio", FOLIO),
    ("libro", BOOK),
    ("universidad", UNIVERSITY),
    ("profesion", PROFESSION),
    ("especialidad", PROFESSION),
    ("nombre", NAME),
    ("medico", NAME),
]


class RetrievalError(Exception):
    """The registry could not be queried or returned no recognizable surface."""

    def __init__(self, message: str, source: str = "registry", retryable: bool = False,
                 status: Optional[int] = None, kind: str = "structure"):
        super().__init__(message)
        self.source = source
        self.retryable = retryable
        self.status = status
        self.kind = kind  # timeout, http, transport, browser, budget or structure


class Deadline:
    """Wall-clock budget for one lookup."""

    def __init__(self, seconds: float, source: str = "registry",
                 clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self.source = source
        self._clock = clock
        self._expires = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires - self._clock())

    def check(self, step: str) -> None:
        if self.remaining() <= 0:
            raise RetrievalError(
                f"Registry lookup exceeded its {self.seconds:.0f}s budget while {step}",
                source=self.source,
                retryable=True,
                kind="budget",
            )

    def cap(self, timeout: float, step: str) -> float:
        """Clamp a per-operation timeout to what is left of the budget."""
        self.check(step)
        return min(timeout, self.remaining())


class FallbackChain(Generic[T]):
    """
    Ordered heuristics tried until one yields a value.

    Each step is a (name, attempt) pair; attempt returns the value or None.
    Exceptions listed in `swallow` count as a miss and the next step runs,
    so best-effort steps against unstable markup never abort the lookup.
    """

    def __init__(self, steps: Iterable[Tuple[str, Callable[..., Optional[T]]]],
                 swallow: Tuple[Type[BaseException], ...] = ()):
        self.steps = list(steps)
        self.swallow = swallow

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.steps]

    def extended(self, *steps: Tuple[str, Callable[..., Optional[T]]]) -> "FallbackChain[T]":
        return FallbackChain(self.steps + list(steps), swallow=self.swallow)

    def first(self, *args, **kwargs) -> Optional[Tuple[str, T]]:
        """Return (step name, value) of the first step that succeeds, else None."""
        for name, attempt in self.steps:
            try:
                value = attempt(*args, **kwargs)
            except self.swallow:
                continue
            if value is not None:
                return name, value
        return None


def header_field(header: str) -> Optional[str]:
    text = normalize_text(header)
    if not text:
        return None
    for keyword, field_name in HEADER_KEYWORDS:
        if keyword in text:
            return field_name
    return None


def map_by_headers(headers: Sequence[str], cells: Sequence[str]) -> Optional[Dict[str, str]]:
    """
    Header-driven field assignment.

    Returns None when headers are missing, do not line up with the cells,
    or do not identify a name column; callers then fall back to positions.
    """
    if not headers or len(headers) != len(cells):
        return None
    record: Dict[str, str] = {}
    for header, cell in zip(headers, cells):
        field_name = header_field(header)
        if field_name and field_name not in record:
            record[field_name] = cell
    if NAME not in record:
        return None
    return record


def map_by_position(cells: Sequence[str], fields: Sequence[str]) -> Dict[str, str]:
    """Fixed column-offset assignment; missing trailing cells become empty strings."""
    return {f: (cells[i] if i < len(cells) else "") for i, f in enumerate(fields)}


def map_row(headers: Sequence[str], cells: Sequence[str], fields: Sequence[str]) -> Dict[str, str]:
    return map_by_headers(headers, cells) or map_by_position(cells, fields)


def cell_text(el: Tag) -> str:
    return collapse_whitespace(el.get_text(" ", strip=True))


def _own_rows(table: Tag) -> List[Tag]:
    # Pager rows in server-rendered grids nest a table; keep only this table's rows.
    return [tr for tr in table.find_all("tr") if tr.find_parent("table") is table]


def table_headers(table: Tag) -> List[str]:
    for tr in _own_rows(table):
        ths = tr.find_all("th", recursive=False)
        if ths:
            return [cell_text(th) for th in ths]
    return []


def table_rows(table: Tag) -> List[List[str]]:
    rows = []
    for tr in _own_rows(table):
        if tr.find("table") is not None:
            continue
        tds = tr.find_all("td", recursive=False)
        if not tds:
            continue
        cells = [cell_text(td) for td in tds]
        if any(cells):
            rows.append(cells)
    return rows


def find_results_table(soup: BeautifulSoup) -> Optional[Tag]:
    """The table with the most data rows of at least two cells."""
    best, best_count = None, 0
    for table in soup.find_all("table"):
        count = sum(1 for cells in table_rows(table) if len(cells) >= 2)
        if count > best_count:
            best, best_count = table, count
    return best


def parse_results_table(html: str, fields: Sequence[str], limit: Optional[int] = None) -> List[Dict[str, str]]:
    """Parse the registry results table into candidate records."""
    soup = BeautifulSoup(html, "html.parser")
    table = find_results_table(soup)
    if table is None:
        return []
    headers = table_headers(table)
    rows = table_rows(table)
    if limit is not None:
        rows = rows[:limit]
    return [map_row(headers, cells, fields) for cells in rows]


def fetch_with_error_handling(
    session: requests.Session,
    method: str,
    url: str,
    source: str,
    logger: StructuredLogger,
    **kwargs,
) -> requests.Response:
    """Issue one HTTP request and translate every failure into RetrievalError."""
    try:
        resp = session.request(method, url, **kwargs)
        resp.raise_for_status()
        return resp
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        logger.error("Registry request failed", url=url, status=status)
        raise RetrievalError(
            f"Registry request failed ({status}): {url}",
            source=source,
            retryable=status is not None and should_retry_http_status(status),
            status=status,
            kind="http",
        ) from e
    except requests.exceptions.Timeout as e:
        logger.warning("Registry request timed out", url=url)
        raise RetrievalError("Registry request timed out. Try again later.",
                             source=source, retryable=True, kind="timeout") from e
    except requests.exceptions.RequestException as e:
        logger.error("Registry request error", url=url, error=str(e))
        raise RetrievalError(f"Registry request error: {e}", source=source,
                             retryable=is_transient_error(e), kind="transport") from e


def digits_conflict(query_id: Optional[str], record: Mapping[str, str]) -> bool:
    """True when both sides carry identity digits and they differ."""
    query_digits = digits_only(query_id)
    record_digits = digits_only(record.get(ID_NUMBER, ""))
    return bool(query_digits and record_digits and query_digits != record_digits)


def digits_match(query_id: Optional[str], record: Mapping[str, str]) -> bool:
    query_digits = digits_only(query_id)
    return bool(query_digits) and query_digits == digits_only(record.get(ID_NUMBER, ""))
