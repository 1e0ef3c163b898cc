"""
Browser-driven registry lookup.

Drives a disposable headless Chrome through the public consult page the
way a person would: find the search box, type, press search, wait, read
the rendered table. Slow but tolerant of client-side rendering.
"""

import re
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.remote.webelement import WebElement

from ..config import VerifierConfig
from ..logger import StructuredLogger, get_logger
from ..models import FetchResult
from ..normalize import normalize_text
from ..schema import Query
from .common import (
    DECREE_NUMBER,
    ID_NUMBER,
    NAME,
    REGISTRATION_NUMBER,
    Deadline,
    FallbackChain,
    RetrievalError,
    digits_conflict,
    parse_results_table,
)

# Column order of the rendered results table when headers are unusable.
INTERACTIVE_FIELDS = [NAME, ID_NUMBER, DECREE_NUMBER, REGISTRATION_NUMBER]

Selector = Tuple[str, str]

INPUT_SELECTORS: List[Selector] = [
    (By.CSS_SELECTOR, 'input[type="search"]'),
    (By.CSS_SELECTOR, 'input[placeholder*="buscar" i]'),
    (By.CSS_SELECTOR, 'input[placeholder*="search" i]'),
    (By.CSS_SELECTOR, 'input[placeholder*="cédula" i]'),
    (By.CSS_SELECTOR, 'input[placeholder*="cedula" i]'),
    (By.CSS_SELECTOR, 'input[name*="search" i]'),
    (By.CSS_SELECTOR, 'input[name*="cedula" i]'),
    (By.CSS_SELECTOR, 'input[name*="nombre" i]'),
    (By.CSS_SELECTOR, "input[type='text']"),
]

_LOWERED_TEXT = "translate(normalize-space(.), 'ABCDEFGHIJKLMNOPQRSTUVWXYZ', 'abcdefghijklmnopqrstuvwxyz')"

BUTTON_SELECTORS: List[Selector] = [
    (By.XPATH, f"//button[contains({_LOWERED_TEXT}, 'buscar')]"),
    (By.XPATH, f"//button[contains({_LOWERED_TEXT}, 'consultar')]"),
    (By.CSS_SELECTOR, 'button[type="submit"]'),
    (By.CSS_SELECTOR, 'input[type="submit"]'),
]

# Matched against normalized body text: "No se encontraron resultados", "Sin resultados", ...
# Punctuation is gone after normalizing, so "no" may be at most three words before the noun.
NO_RESULTS = re.compile(r"\bno\b(?:\s+\w+){0,3}\s+(?:resultado|encontr)|\bsin resultados?\b|\bno results\b")


def visible_element(by: str, selector: str) -> Callable[[WebDriver], Optional[WebElement]]:
    """Chain step: first element matching the selector, if it is displayed."""
    def attempt(driver: WebDriver) -> Optional[WebElement]:
        elements = driver.find_elements(by, selector)
        if elements and elements[0].is_displayed():
            return elements[0]
        return None
    return attempt


def selector_chain(selectors: List[Selector]) -> FallbackChain[WebElement]:
    return FallbackChain(
        ((f"{by}:{selector}", visible_element(by, selector)) for by, selector in selectors),
        swallow=(WebDriverException,),
    )


def chrome_driver(config: VerifierConfig) -> WebDriver:
    options = webdriver.ChromeOptions()
    if config.headless:
        options.add_argument("--headless=new")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument(f"--user-agent={config.user_agent}")
    if not config.verify_tls(config.registry_url):
        options.add_argument("--ignore-certificate-errors")
    # Return once the DOM is parsed; the settle delay covers client-side assembly.
    options.page_load_strategy = "eager"
    return webdriver.Chrome(options=options)


@contextmanager
def browser_session(
    factory: Callable[[VerifierConfig], WebDriver],
    config: VerifierConfig,
    logger: StructuredLogger,
) -> Iterator[WebDriver]:
    """One browser per lookup, always quit, even on timeout or error."""
    try:
        driver = factory(config)
    except WebDriverException as e:
        raise RetrievalError(f"Could not start a browser session: {e.msg}",
                             source="interactive", retryable=True, kind="browser") from e
    try:
        yield driver
    finally:
        try:
            driver.quit()
        except Exception as e:
            logger.warning("Browser teardown failed", error=str(e))


def best_effort(action: Callable, *args) -> bool:
    try:
        action(*args)
        return True
    except WebDriverException:
        return False


class InteractiveSource:
    name = "interactive"

    def __init__(
        self,
        config: VerifierConfig,
        logger: Optional[StructuredLogger] = None,
        driver_factory: Callable[[VerifierConfig], WebDriver] = chrome_driver,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        input_chain: Optional[FallbackChain[WebElement]] = None,
        button_chain: Optional[FallbackChain[WebElement]] = None,
    ):
        self.config = config
        self.logger = logger or get_logger()
        self.driver_factory = driver_factory
        self.sleep = sleep
        self.clock = clock
        self.input_chain = input_chain or selector_chain(INPUT_SELECTORS)
        self.button_chain = button_chain or selector_chain(BUTTON_SELECTORS)

    def fetch_candidates(self, query: Query) -> FetchResult:
        deadline = Deadline(self.config.overall_timeout, source=self.name, clock=self.clock)
        self.logger.record_lookup_attempt(self.name)
        try:
            with browser_session(self.driver_factory, self.config, self.logger) as driver:
                result = self._search(driver, query, deadline)
        except RetrievalError as e:
            self.logger.record_lookup_failure(self.name, e.kind)
            raise
        self.logger.record_lookup_success(self.name)
        return result

    def _wait(self, seconds: float, deadline: Deadline, step: str) -> None:
        self.sleep(min(seconds, deadline.remaining()))
        deadline.check(step)

    def _search(self, driver: WebDriver, query: Query, deadline: Deadline) -> FetchResult:
        try:
            self._open(driver, deadline)
            self._wait(self.config.settle_delay, deadline, "waiting for the page to settle")
            self._submit(driver, query.search_term)
            self._wait(self.config.results_delay, deadline, "waiting for results")
            return self._read_results(driver, query)
        except (TimeoutException, WebDriverException) as e:
            raise RetrievalError(
                "Could not query the registry (site down or page changed).",
                source=self.name, retryable=True, kind="browser",
            ) from e

    def _open(self, driver: WebDriver, deadline: Deadline) -> None:
        timeout = deadline.cap(self.config.page_load_timeout, "loading the registry page")
        driver.set_page_load_timeout(timeout)
        try:
            driver.get(self.config.registry_url)
        except TimeoutException as e:
            self.logger.warning("Registry page load timed out", url=self.config.registry_url, timeout=timeout)
            raise RetrievalError(f"Registry page did not load within {timeout:.0f}s",
                                 source=self.name, retryable=True, kind="timeout") from e

    def _submit(self, driver: WebDriver, term: str) -> None:
        found = self.input_chain.first(driver)
        if found is None:
            self.logger.debug("No search input found", html_length=len(driver.page_source or ""))
            raise RetrievalError("Search field not found on the registry page.",
                                 source=self.name, kind="structure")
        selector, field = found
        self.logger.debug("Using search input", selector=selector)

        best_effort(field.click)
        field.clear()
        field.send_keys(term)

        button = self.button_chain.first(driver)
        if button is not None:
            self.logger.debug("Pressing search button", selector=button[0])
            best_effort(button[1].click)
        else:
            best_effort(field.send_keys, Keys.ENTER)

    def _read_results(self, driver: WebDriver, query: Query) -> FetchResult:
        html = driver.page_source or ""
        records = parse_results_table(html, INTERACTIVE_FIELDS, limit=1)
        if records:
            kept = tuple(r for r in records if not digits_conflict(query.id_number, r))
            if not kept:
                self.logger.info("Discarded registry row with a different cedula")
                return FetchResult(diagnostics=("Registry row discarded: cedula differs from the query",))
            return FetchResult(records=kept)

        if NO_RESULTS.search(normalize_text(self._body_text(driver))):
            return FetchResult()

        self.logger.warning("No result rows and no 'no results' message", html_length=len(html))
        return FetchResult(diagnostics=(
            "Ambiguous empty state: no result rows and no 'no results' message; page markup may have changed",
        ))

    def _body_text(self, driver: WebDriver) -> str:
        try:
            return driver.find_element(By.TAG_NAME, "body").text or ""
        except WebDriverException:
            return ""
