"""
Pytest configuration and shared fixtures.

Record sources are exercised against fake HTTP sessions and fake browser
drivers; nothing here touches the network or starts a browser.
"""

from typing import Dict, List, Optional, Tuple

import pytest
import requests
from selenium.webdriver.common.by import By

from exequatur.config import VerifierConfig
from exequatur.logger import StructuredLogger

ENTRY_URL = "https://sns.gob.do/herramientas-de-consulta/consulta-de-exequatur/"
APP_URL = "https://exequatur.example.gob.do/Consulta.aspx"


ENTRY_HTML = f"""
<html><body>
  <h1>Consulta de Exequátur</h1>
  <iframe src="about:blank"></iframe>
  <iframe src="{APP_URL}" width="100%"></iframe>
</body></html>
"""

FORM_HTML = """
<html><body>
<form method="post" action="./Consulta.aspx" id="form1">
  <input type="hidden" name="__EVENTTARGET" value="gvResultados$ctl01" />
  <input type="hidden" name="__EVENTARGUMENT" value="Page$2" />
  <input type="hidden" name="__VIEWSTATE" value="dDwtMTA4MzE0MjEwNTs7Pg==" />
  <input type="hidden" name="__EVENTVALIDATION" value="/wEWBALqxMC8" />
  <select name="ddlTipo">
    <option value="N">Nombre</option>
    <option value="C" selected>Cedula</option>
  </select>
  <input type="checkbox" name="chkExacta" />
  <input type="checkbox" name="chkActivos" checked value="on" />
  <textarea name="txtNotas">ninguna</textarea>
  <input type="text" name="txtBuscar" id="txtBuscar" value="" placeholder="Nombre del medico" />
  <input type="submit" name="btnBuscar" value="Buscar" />
  <input type="submit" name="btnLimpiar" value="Limpiar" />
</form>
</body></html>
"""

RESULTS_HTML = """
<html><body>
<form method="post" action="./Consulta.aspx">
<input type="hidden" name="__VIEWSTATE" value="bmV4dA==" />
<table id="gvResultados">
  <tr>
    <th>Nombre</th><th>Profesión</th><th>Universidad</th><th>No. Registro</th>
    <th>Fecha Registro</th><th>Folio</th><th>Libro</th><th>Decreto</th>
  </tr>
  <tr>
    <td>JUAN PÉREZ GÓMEZ</td><td>Doctor en Medicina</td><td>UASD</td><td>12345</td>
    <td>01/02/2010</td><td>45</td><td>12</td><td>123-10</td>
  </tr>
  <tr>
    <td>JUANA PEREZ DE LA CRUZ</td><td>Doctor en Medicina</td><td>PUCMM</td><td>67890</td>
    <td>15/06/2015</td><td>88</td><td>20</td><td>456-15</td>
  </tr>
  <tr><td colspan="8"><table><tr><td>1</td><td>2</td></tr></table></td></tr>
</table>
</form>
</body></html>
"""

RESULTS_NO_HEADERS_HTML = """
<html><body>
<table>
  <tr>
    <td>ANA TORRES</td><td>Doctor en Medicina</td><td>INTEC</td><td>555</td>
    <td>03/03/2003</td><td>7</td><td>2</td><td>99-03</td>
  </tr>
</table>
</body></html>
"""

EMPTY_RESULTS_HTML = """
<html><body><form><input type="hidden" name="__VIEWSTATE" value="x" />
<span>No se encontraron registros.</span></form></body></html>
"""

INTERACTIVE_RESULTS_HTML = """
<html><body>
<div class="consulta">
<table class="resultados">
  <tbody>
    <tr><td>JUAN PEREZ GOMEZ</td><td>001-1234567-8</td><td>123-10</td><td>12345</td></tr>
    <tr><td>JUAN PEREZ</td><td>001-7654321-0</td><td>77-01</td><td>999</td></tr>
  </tbody>
</table>
</div>
</body></html>
"""

INTERACTIVE_HEADED_HTML = """
<html><body>
<table>
  <thead><tr><th>Cédula</th><th>Nombre del Médico</th><th>Registro</th><th>Decreto</th></tr></thead>
  <tbody><tr><td>00112345678</td><td>MARIA LOPEZ</td><td>321</td><td>10-20</td></tr></tbody>
</table>
</body></html>
"""


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, url: str = ""):
        self.text = text
        self.status_code = status_code
        self.url = url

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Stands in for requests.Session: routes (method, url) to canned responses."""

    def __init__(self, routes: Dict[Tuple[str, str], object]):
        self.routes = routes
        self.headers: Dict[str, str] = {}
        self.calls: List[Tuple[str, str, dict]] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def request(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        outcome = self.routes[(method, url)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeElement:
    def __init__(self, displayed: bool = True, text: str = "", click_error: Optional[Exception] = None):
        self.displayed = displayed
        self.text = text
        self.click_error = click_error
        self.clicks = 0
        self.typed: List[str] = []

    def is_displayed(self):
        return self.displayed

    def click(self):
        if self.click_error is not None:
            raise self.click_error
        self.clicks += 1

    def clear(self):
        self.typed = []

    def send_keys(self, *keys):
        self.typed.extend(keys)


class FakeDriver:
    """Minimal selenium WebDriver double."""

    def __init__(
        self,
        elements: Optional[Dict[Tuple[str, str], List[FakeElement]]] = None,
        page_source: str = "",
        body_text: str = "",
        get_error: Optional[Exception] = None,
        quit_error: Optional[Exception] = None,
    ):
        self.elements = elements or {}
        self.page_source = page_source
        self.body_text = body_text
        self.get_error = get_error
        self.quit_error = quit_error
        self.visited: List[str] = []
        self.page_load_timeout: Optional[float] = None
        self.quit_called = False

    def set_page_load_timeout(self, seconds):
        self.page_load_timeout = seconds

    def get(self, url):
        self.visited.append(url)
        if self.get_error is not None:
            raise self.get_error

    def find_elements(self, by, selector):
        return self.elements.get((by, selector), [])

    def find_element(self, by, selector):
        if (by, selector) == (By.TAG_NAME, "body"):
            return FakeElement(text=self.body_text)
        raise KeyError(selector)

    def quit(self):
        self.quit_called = True
        if self.quit_error is not None:
            raise self.quit_error


class FakeClock:
    """Monotonic clock that only moves when the fake sleep is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def quiet_logger(tmp_path) -> StructuredLogger:
    return StructuredLogger(name="exequatur.test", log_dir=tmp_path, enable_console=False)


@pytest.fixture
def config() -> VerifierConfig:
    return VerifierConfig(registry_url=ENTRY_URL)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
