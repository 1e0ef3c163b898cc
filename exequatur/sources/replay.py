"""
Stateful form replay against the registry's backing application.

The public page only embeds the real search application in a frame. That
application is a server-side form that expects its hidden state fields to
come back unchanged on every submission, bound to the session cookie that
issued them. We fetch the form, clone every field, fill the search term,
press exactly one button, and parse the returned table.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from ..config import VerifierConfig
from ..logger import StructuredLogger, get_logger
from ..models import FetchResult
from ..normalize import normalize_text
from ..schema import Query
from .common import (
    BOOK,
    DECREE_NUMBER,
    FOLIO,
    NAME,
    PROFESSION,
    REGISTRATION_DATE,
    REGISTRATION_NUMBER,
    UNIVERSITY,
    Deadline,
    FallbackChain,
    RetrievalError,
    fetch_with_error_handling,
    parse_results_table,
)

# Fixed column offsets of the application's result grid.
REPLAY_FIELDS = [
    NAME,
    PROFESSION,
    UNIVERSITY,
    REGISTRATION_NUMBER,
    REGISTRATION_DATE,
    FOLIO,
    BOOK,
    DECREE_NUMBER,
]

SEARCH_FIELD_HINTS = ("buscar", "search", "nombre", "criterio", "txt")
SUBMIT_HINTS = ("buscar", "consultar", "search")
ACTION_INPUT_TYPES = {"submit", "button", "image", "reset"}
# Postback event fields; blank means "a button was pressed", not a control event.
EVENT_FIELDS = ("__EVENTTARGET", "__EVENTARGUMENT")


def _host_matches(url: str, hosts: Tuple[str, ...]) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == h or host.endswith("." + h) for h in hosts)


def find_frame_url(html: str, base_url: str, preferred_hosts: Tuple[str, ...] = ()) -> Optional[str]:
    """
    URL of the embedded application frame.

    Frames inside <noscript> (tag-manager fallbacks) never count. A frame on
    one of `preferred_hosts` wins over earlier frames on other hosts; with no
    such frame the first usable one is returned.
    """
    soup = BeautifulSoup(html, "html.parser")
    urls = []
    for frame in soup.find_all(["iframe", "frame"], src=True):
        if frame.find_parent("noscript") is not None:
            continue
        src = frame["src"].strip()
        if src and not src.startswith(("about:", "javascript:")):
            urls.append(urljoin(base_url, src))
    preferred = [u for u in urls if _host_matches(u, preferred_hosts)]
    return (preferred or urls or [None])[0]


def find_state_form(soup: BeautifulSoup, state_field: str) -> Optional[Tag]:
    """The form holding the state token, else the first form on the page."""
    token = soup.find("input", attrs={"name": state_field})
    if token is not None:
        form = token.find_parent("form")
        if form is not None:
            return form
    return soup.find("form")


def _option_value(option: Tag) -> str:
    return option.get("value", option.get_text(strip=True))


def clone_form_fields(form: Tag) -> Tuple[Dict[str, str], List[Tag]]:
    """
    Copy every named input/select/textarea value verbatim.

    Returns the payload and the action controls (submit-like inputs and
    buttons), which the caller strips so only one action is submitted.
    """
    payload: Dict[str, str] = {}
    actions: List[Tag] = []
    for el in form.find_all(["input", "select", "textarea", "button"]):
        name = el.get("name")
        if not name:
            continue
        if el.name == "button":
            actions.append(el)
            continue
        if el.name == "select":
            option = el.find("option", selected=True) or el.find("option")
            payload[name] = _option_value(option) if option is not None else ""
        elif el.name == "textarea":
            payload[name] = el.get_text()
        else:
            kind = (el.get("type") or "text").lower()
            if kind in ACTION_INPUT_TYPES:
                actions.append(el)
                payload[name] = el.get("value", "")
                continue
            if kind in ("checkbox", "radio") and not el.has_attr("checked"):
                continue
            payload[name] = el.get("value", "")
    return payload, actions


def _hinted(el: Tag, hints: Tuple[str, ...]) -> bool:
    text = normalize_text(" ".join([el.get("name", ""), el.get("id", ""), el.get("value", ""),
                                    el.get("placeholder", ""), el.get_text(" ")]))
    return any(h in text for h in hints)


def _text_inputs(form: Tag) -> List[Tag]:
    return [
        el for el in form.find_all("input")
        if el.get("name") and (el.get("type") or "text").lower() in ("text", "search")
    ]


def _action_value(el: Tag) -> str:
    if el.name == "button":
        return el.get("value", el.get_text(strip=True))
    return el.get("value", "")


class ProtocolReplaySource:
    name = "replay"

    def __init__(
        self,
        config: VerifierConfig,
        logger: Optional[StructuredLogger] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.logger = logger or get_logger()
        self.session_factory = session_factory
        self.clock = clock

        configured_search = []
        if config.search_field:
            configured_search.append(("configured", lambda form: config.search_field))
        self.search_field_chain: FallbackChain[str] = FallbackChain(configured_search + [
            ("hinted text input", lambda form: next(
                (el["name"] for el in _text_inputs(form) if _hinted(el, SEARCH_FIELD_HINTS)), None)),
            ("first text input", lambda form: next((el["name"] for el in _text_inputs(form)), None)),
        ])

        configured_submit = []
        if config.submit_field:
            configured_submit.append(("configured", self._configured_submit))
        self.submit_chain: FallbackChain[Tuple[str, str]] = FallbackChain(configured_submit + [
            ("hinted button", lambda actions: next(
                ((el["name"], _action_value(el)) for el in actions if _hinted(el, SUBMIT_HINTS)), None)),
            ("first submit", lambda actions: next(
                ((el["name"], _action_value(el)) for el in actions
                 if el.name == "button" or (el.get("type") or "").lower() in ("submit", "image")), None)),
        ])

    def _configured_submit(self, actions: List[Tag]) -> Tuple[str, str]:
        value = self.config.submit_value
        if value is None:
            value = next((_action_value(el) for el in actions if el.get("name") == self.config.submit_field), "")
        return self.config.submit_field, value

    def fetch_candidates(self, query: Query) -> FetchResult:
        deadline = Deadline(self.config.overall_timeout, source=self.name, clock=self.clock)
        self.logger.record_lookup_attempt(self.name)
        try:
            # Fresh session per lookup: the state token is only valid with its own cookies.
            with self.session_factory() as session:
                session.headers.update({"User-Agent": self.config.user_agent})
                records = self._search(session, query, deadline)
        except RetrievalError as e:
            self.logger.record_lookup_failure(self.name, e.kind)
            raise
        self.logger.record_lookup_success(self.name)
        return FetchResult(records=tuple(records))

    def _request(self, session: requests.Session, method: str, url: str, deadline: Deadline,
                 step: str, **kwargs) -> requests.Response:
        verify = self.config.verify_tls(url)
        if not verify:
            self.logger.debug("TLS verification relaxed for legacy host", url=url)
        return fetch_with_error_handling(
            session, method, url, self.name, self.logger,
            timeout=deadline.cap(self.config.http_timeout, step),
            verify=verify,
            **kwargs,
        )

    def resolve_application_url(self, session: requests.Session, deadline: Deadline) -> str:
        if self.config.application_url:
            return self.config.application_url
        resp = self._request(session, "GET", self.config.registry_url, deadline, "loading the entry page")
        url = find_frame_url(resp.text, resp.url or self.config.registry_url, self.config.frame_hosts)
        if url is None:
            raise RetrievalError("No embedded registry application found on the entry page.",
                                 source=self.name, kind="structure")
        self.logger.debug("Resolved registry application", url=url)
        return url

    def build_submission(self, form: Tag, term: str) -> Dict[str, str]:
        payload, actions = clone_form_fields(form)

        search = self.search_field_chain.first(form)
        if search is None:
            raise RetrievalError("No search field in the registry form.", source=self.name, kind="structure")
        submit = self.submit_chain.first(actions)
        if submit is None:
            raise RetrievalError("No search button in the registry form.", source=self.name, kind="structure")

        for el in actions:
            payload.pop(el["name"], None)
        for name in EVENT_FIELDS:
            if name in payload:
                payload[name] = ""

        search_name = search[1]
        submit_name, submit_value = submit[1]
        payload[search_name] = term
        payload[submit_name] = submit_value
        self.logger.debug("Replaying form", search_field=search_name, submit_field=submit_name,
                          fields=len(payload))
        return payload

    def _search(self, session: requests.Session, query: Query, deadline: Deadline) -> List[Dict[str, str]]:
        app_url = self.resolve_application_url(session, deadline)
        resp = self._request(session, "GET", app_url, deadline, "loading the search form")
        page_url = resp.url or app_url

        soup = BeautifulSoup(resp.text, "html.parser")
        if soup.find("input", attrs={"name": self.config.state_field}) is None:
            self.logger.warning("Form-state token missing", url=page_url, html_length=len(resp.text))
            raise RetrievalError("Form-state token not found; the registry page structure changed.",
                                 source=self.name, kind="structure")
        form = find_state_form(soup, self.config.state_field)
        if form is None:
            raise RetrievalError("Registry search form not found.", source=self.name, kind="structure")

        payload = self.build_submission(form, query.search_term)
        post_url = urljoin(page_url, form.get("action") or "")
        result = self._request(session, "POST", post_url, deadline, "submitting the search", data=payload)

        records = parse_results_table(result.text, REPLAY_FIELDS)
        self.logger.debug("Parsed registry results", rows=len(records))
        return records
