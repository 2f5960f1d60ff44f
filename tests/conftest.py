"""
Pytest fixtures and fakes for the session keeper test suite.

FakeDriver stands in for a real browser page: it tracks which selectors
exist, what was typed, whether the form was submitted and how many times
close() ran.
"""

import asyncio
from typing import Callable, Optional

import httpx
import pytest

from dxm_session import config
from dxm_session.constants import CAPTCHA_INPUT_SELECTORS, SELECTORS
from dxm_session.models.session import Alert, Credentials
from dxm_session.session_manager.browser import BrowserLoginSession
from dxm_session.session_manager.captcha import CaptchaSolver
from dxm_session.session_manager.errors import FormNotFoundError
from dxm_session.session_manager.manager import RefreshOrchestrator
from dxm_session.session_manager.store import FileCookieBackend, SessionStore

LOGIN_PAGE = "https://www.dianxiaomi.com/"
HOME_PAGE = "https://www.dianxiaomi.com/home.htm"
SUBMIT_BUTTON = 'button[type="submit"]'

DEFAULT_ELEMENTS = {
    SELECTORS["login_username"],
    SELECTORS["login_password"],
    SELECTORS["captcha_image"],
    CAPTCHA_INPUT_SELECTORS[0],
    SUBMIT_BUTTON,
}

GOOD_OCR = [("Ab", 92), ("3-x", 88)]  # -> "Ab3x" @ 90
LOW_OCR = [("Zq9", 30)]


# === Fakes ===


class FakeDriver:
    """In-memory browser page following the Dianxiaomi login flow."""

    def __init__(
        self,
        *,
        elements: Optional[set] = None,
        url_after_submit: str = HOME_PAGE,
        error_text: Optional[str] = None,
        form_stays_after_submit: bool = False,
        cookies: Optional[list] = None,
        navigate_error: Optional[Exception] = None,
        navigate_delay: float = 0,
        click_fails: tuple = (),
        captcha_png: bytes = b"\x89PNG-captcha",
    ):
        self.present = set(DEFAULT_ELEMENTS if elements is None else elements)
        self.url = "about:blank"
        self.url_after_submit = url_after_submit
        self.error_text = error_text
        self.form_stays_after_submit = form_stays_after_submit
        self.cookies = [
            {"name": "dxm_i", "value": "abc"},
            {"name": "JSESSIONID", "value": "S1"},
        ] if cookies is None else cookies
        self.navigate_error = navigate_error
        self.navigate_delay = navigate_delay
        self.click_fails = set(click_fails)
        self.captcha_png = captcha_png

        self.filled: dict = {}
        self.clicked: list = []
        self.pressed: list = []
        self.navigated: list = []
        self.submitted = False
        self.close_calls = 0

    def _submit(self):
        self.submitted = True
        self.url = self.url_after_submit
        if not self.form_stays_after_submit and not self.error_text:
            self.present.discard(SELECTORS["login_username"])

    async def navigate(self, url, timeout_ms):
        if self.navigate_delay:
            await asyncio.sleep(self.navigate_delay)
        if self.navigate_error:
            raise self.navigate_error
        self.navigated.append(url)
        self.url = url

    async def wait_for(self, selector, timeout_ms):
        return selector in self.present

    async def fill_field(self, selector, value):
        if selector not in self.present:
            raise FormNotFoundError(selector)
        self.filled[selector] = value

    async def screenshot_element(self, selector):
        if selector not in self.present:
            raise FormNotFoundError(selector)
        return self.captcha_png

    async def click(self, selector):
        if selector in self.click_fails:
            raise RuntimeError(f"{selector} is covered by an overlay")
        self.clicked.append(selector)
        self._submit()

    async def press(self, key):
        self.pressed.append(key)
        if key == "Enter":
            self._submit()

    async def has_element(self, selector):
        return selector in self.present

    async def text_of(self, selector):
        if selector == SELECTORS["login_error"] and self.submitted:
            return self.error_text
        return None

    async def current_url(self):
        return self.url

    async def get_cookies(self):
        return list(self.cookies)

    async def close(self):
        self.close_calls += 1


class FakeDriverFactory:
    """Hands out a new FakeDriver per launch; `specs` configure them in order."""

    def __init__(
        self,
        *specs: dict,
        default: Optional[dict] = None,
        error: Optional[Exception] = None,
        launch_delay: float = 0,
    ):
        self.specs = list(specs)
        self.default = default or {}
        self.error = error
        self.launch_delay = launch_delay
        self.launched: list[FakeDriver] = []

    async def __call__(self) -> FakeDriver:
        if self.launch_delay:
            await asyncio.sleep(self.launch_delay)
        if self.error:
            raise self.error
        spec = self.specs.pop(0) if self.specs else self.default
        driver = FakeDriver(**spec)
        self.launched.append(driver)
        return driver


class FakeOcrProvider:
    """Returns scripted fragment lists; the last entry repeats forever."""

    source = "fake-ocr"

    def __init__(self, *responses):
        self.responses = list(responses) or [GOOD_OCR]
        self.calls = 0
        self.received: list[str] = []

    async def recognize(self, image_base64):
        self.calls += 1
        self.received.append(image_base64)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class RecordingAlertSink:
    def __init__(self):
        self.alerts: list[Alert] = []

    async def send(self, alert):
        self.alerts.append(alert)
        return True


def probe_transport(valid_cookies: set, *, status_for_invalid: int = 302) -> httpx.MockTransport:
    """Platform stand-in: export endpoint answers with a uuid only for valid cookies."""

    def handler(request: httpx.Request) -> httpx.Response:
        cookie = request.headers.get("Cookie", "")
        if cookie in valid_cookies:
            return httpx.Response(200, json={"uuid": "export-123", "code": 0})
        return httpx.Response(status_for_invalid, headers={"location": "/index.htm?login"})

    return httpx.MockTransport(handler)


# === Fixtures ===


@pytest.fixture(autouse=True)
def data_root(tmp_path, monkeypatch):
    """Keep every configured path under tmp_path so tests never touch the repo."""
    root = tmp_path / "data"
    monkeypatch.setattr(config, "DATA_DIR", root)
    monkeypatch.setattr(config, "LOG_DIR", root / "logs")
    monkeypatch.setattr(config, "COOKIE_FILE", root / "dianxiaomi-current-cookie.txt")
    monkeypatch.setattr(config, "COOKIE_DB_PATH", root / "session.db")
    monkeypatch.setattr(config, "ALERT_LOG_FILE", root / "logs" / "dxm-cookie-alert.log")
    return root


@pytest.fixture
def credentials():
    return Credentials(username="seller01", password="s3cret-pass")


@pytest.fixture
def cookie_file(tmp_path):
    return tmp_path / "dianxiaomi-current-cookie.txt"


@pytest.fixture
def valid_cookies():
    return set()


@pytest.fixture
def store(cookie_file, valid_cookies):
    return SessionStore(FileCookieBackend(cookie_file), transport=probe_transport(valid_cookies))


@pytest.fixture
def alert_sink():
    return RecordingAlertSink()


@pytest.fixture
def make_login_session(credentials) -> Callable[..., BrowserLoginSession]:
    def _make(factory, provider=None, **kwargs):
        kwargs.setdefault("settle_delay", 0)
        kwargs.setdefault("session_timeout", 5)
        return BrowserLoginSession(
            credentials,
            CaptchaSolver(provider or FakeOcrProvider()),
            factory,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_orchestrator(store, alert_sink, make_login_session):
    def _make(factory, provider=None, *, max_retries=3, retry_delay=0, require_verified=False):
        return RefreshOrchestrator(
            store=store,
            login_session=make_login_session(factory, provider),
            alert_sink=alert_sink,
            max_retries=max_retries,
            retry_delay=retry_delay,
            require_verified=require_verified,
        )

    return _make
