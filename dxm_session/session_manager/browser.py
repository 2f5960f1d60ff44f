"""Headless-browser login: credentials + OCR'd captcha -> session cookie."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..config import (
    BROWSER_SESSION_TIMEOUT,
    BROWSER_TIMEOUT,
    CAPTCHA_CONFIDENCE_THRESHOLD,
    LOGIN_SETTLE_DELAY,
)
from ..constants import (
    CAPTCHA_INPUT_SELECTORS,
    DXM_LOGIN_URL,
    POST_LOGIN_URL_PATTERNS,
    SELECTORS,
    SUBMIT_SELECTORS,
)
from ..models.session import AttemptOutcome, Credentials, LoginAttempt
from .captcha import CaptchaSolver
from .driver import BrowserDriver, launch_driver
from .errors import FormNotFoundError, NavigationError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

FORM_WAIT_MS = 10000
CAPTCHA_INPUT_WAIT_MS = 5000

DriverFactory = Callable[[], Awaitable[BrowserDriver]]


class LoginState(str, Enum):
    NAV_LOGIN_PAGE = "nav_login_page"
    FILL_CREDENTIALS = "fill_credentials"
    CAPTURE_CAPTCHA = "capture_captcha"
    RECOGNIZE_CAPTCHA = "recognize_captcha"
    FILL_CAPTCHA = "fill_captcha"
    SUBMIT = "submit"
    AWAIT_RESULT = "await_result"
    SUCCESS = "success"
    FAILURE = "failure"


# ── Result decision table ────────────────────────────────────────────────────


@dataclass(frozen=True)
class PageSnapshot:
    """What the page looks like once the post-submit settle delay is over."""

    url: str
    error_text: Optional[str]
    login_form_present: bool


@dataclass(frozen=True)
class ResultRule:
    name: str
    matches: Callable[[PageSnapshot], bool]
    outcome: AttemptOutcome


RESULT_RULES: list[ResultRule] = [
    ResultRule(
        "post_login_url",
        lambda s: any(pattern in s.url for pattern in POST_LOGIN_URL_PATTERNS),
        AttemptOutcome.SUCCESS,
    ),
    ResultRule("inline_error", lambda s: bool(s.error_text), AttemptOutcome.LOGIN_REJECTED),
    ResultRule("login_form_present", lambda s: s.login_form_present, AttemptOutcome.STILL_ON_LOGIN_PAGE),
]

# The platform has no canonical "welcome" marker, so leaving the login page
# without an error counts as logged in.
DEFAULT_RULE = ResultRule("left_login_page", lambda s: True, AttemptOutcome.SUCCESS)


def classify_result(snapshot: PageSnapshot, rules: list[ResultRule] = RESULT_RULES) -> ResultRule:
    """Return the first rule matching the snapshot, falling back to DEFAULT_RULE."""
    for rule in rules:
        if rule.matches(snapshot):
            return rule
    return DEFAULT_RULE


def serialize_cookies(cookies: list[dict]) -> str:
    return "; ".join(f"{c['name']}={c['value']}" for c in cookies if "name" in c and "value" in c)


# ── Login session ────────────────────────────────────────────────────────────


class BrowserLoginSession:
    """Runs one login attempt per `login()` call in a freshly launched browser.

    FormNotFoundError, NavigationError, RecognitionError and BrowserLaunchError
    propagate to the caller. Low-confidence captchas and rejected logins come
    back as failed LoginAttempt records. The browser is closed on every path.
    """

    def __init__(
        self,
        credentials: Credentials,
        solver: CaptchaSolver,
        driver_factory: DriverFactory = launch_driver,
        *,
        confidence_threshold: int = CAPTCHA_CONFIDENCE_THRESHOLD,
        settle_delay: float = LOGIN_SETTLE_DELAY,
        page_timeout_ms: int = BROWSER_TIMEOUT,
        session_timeout: float = BROWSER_SESSION_TIMEOUT,
        login_url: str = DXM_LOGIN_URL,
    ):
        credentials.validate_present()
        self._credentials = credentials
        self._solver = solver
        self._driver_factory = driver_factory
        self.confidence_threshold = confidence_threshold
        self.settle_delay = settle_delay
        self.page_timeout_ms = page_timeout_ms
        self.session_timeout = session_timeout
        self.login_url = login_url
        self.state = LoginState.NAV_LOGIN_PAGE

    async def login(self, sequence: int = 1) -> LoginAttempt:
        self.state = LoginState.NAV_LOGIN_PAGE
        driver: Optional[BrowserDriver] = None

        async def launch_and_run() -> LoginAttempt:
            nonlocal driver
            driver = await self._driver_factory()
            return await self._run(driver, sequence)

        try:
            return await asyncio.wait_for(launch_and_run(), timeout=self.session_timeout)
        except asyncio.TimeoutError as e:
            stuck_in = self.state
            self.state = LoginState.FAILURE
            raise NavigationError(
                f"Login attempt {sequence} exceeded {self.session_timeout}s (stuck in {stuck_in.value})"
            ) from e
        except Exception:
            self.state = LoginState.FAILURE
            raise
        finally:
            if driver is not None:
                await driver.close()
                logger.info(f"[attempt {sequence}] Browser closed.")

    async def _run(self, driver: BrowserDriver, sequence: int) -> LoginAttempt:
        tag = f"[attempt {sequence}]"

        self._enter(LoginState.NAV_LOGIN_PAGE, tag)
        await driver.navigate(self.login_url, self.page_timeout_ms)

        self._enter(LoginState.FILL_CREDENTIALS, tag)
        await self._fill_credentials(driver)

        self._enter(LoginState.CAPTURE_CAPTCHA, tag)
        if not await driver.wait_for(SELECTORS["captcha_image"], FORM_WAIT_MS):
            raise FormNotFoundError(f"Captcha image {SELECTORS['captcha_image']} not found")
        image = await driver.screenshot_element(SELECTORS["captcha_image"])
        logger.info(f"{tag} Captured captcha image ({len(image)} bytes)")

        self._enter(LoginState.RECOGNIZE_CAPTCHA, tag)
        result = await self._solver.solve(image)
        if not result.is_usable(self.confidence_threshold):
            self.state = LoginState.FAILURE
            logger.warning(
                f"{tag} Captcha '{result.text}' unusable (confidence {result.confidence}%, "
                f"threshold {self.confidence_threshold}%); not submitting."
            )
            return LoginAttempt(
                sequence=sequence,
                outcome=AttemptOutcome.LOW_CONFIDENCE,
                message=f"Captcha '{result.text}' unusable at {result.confidence}% confidence",
                captcha_text=result.text,
                confidence=result.confidence,
                final_url=await driver.current_url(),
            )

        self._enter(LoginState.FILL_CAPTCHA, tag)
        captcha_selector = await self._find_captcha_input(driver)
        await driver.fill_field(captcha_selector, result.text)
        logger.info(f"{tag} Entered captcha '{result.text}' into {captcha_selector}")

        self._enter(LoginState.SUBMIT, tag)
        await self._submit(driver, tag)

        self._enter(LoginState.AWAIT_RESULT, tag)
        await asyncio.sleep(self.settle_delay)
        snapshot = await self._snapshot(driver)
        rule = classify_result(snapshot)
        logger.info(f"{tag} Landed on {snapshot.url} -> rule '{rule.name}' ({rule.outcome.value})")

        attempt = LoginAttempt(
            sequence=sequence,
            outcome=rule.outcome,
            captcha_text=result.text,
            confidence=result.confidence,
            final_url=snapshot.url,
        )

        if rule.outcome != AttemptOutcome.SUCCESS:
            self.state = LoginState.FAILURE
            if rule.outcome == AttemptOutcome.LOGIN_REJECTED:
                attempt.message = f"Platform rejected login: {snapshot.error_text}"
            else:
                attempt.message = "Still on login page after submit"
            logger.warning(f"{tag} {attempt.message}")
            return attempt

        cookies = await driver.get_cookies()
        attempt.cookie = serialize_cookies(cookies)
        attempt.cookie_count = len(cookies)
        if not attempt.cookie:
            self.state = LoginState.FAILURE
            attempt.outcome = AttemptOutcome.ERROR
            attempt.message = "Login looked successful but the browser returned no cookies"
            logger.error(f"{tag} {attempt.message}")
            return attempt

        self.state = LoginState.SUCCESS
        attempt.message = f"Logged in ({rule.name}), extracted {len(cookies)} cookies"
        logger.info(f"{tag} {attempt.message}")
        return attempt

    def _enter(self, state: LoginState, tag: str):
        self.state = state
        logger.debug(f"{tag} -> {state.value}")

    async def _fill_credentials(self, driver: BrowserDriver):
        if not await driver.wait_for(SELECTORS["login_username"], FORM_WAIT_MS):
            raise FormNotFoundError(f"Login field {SELECTORS['login_username']} not found")
        if not await driver.has_element(SELECTORS["login_password"]):
            raise FormNotFoundError(f"Password field {SELECTORS['login_password']} not found")

        logger.info(
            f"Filling credentials for {self._credentials.username} "
            f"(password {self._credentials.masked_password})"
        )
        await driver.fill_field(SELECTORS["login_username"], self._credentials.username)
        await driver.fill_field(SELECTORS["login_password"], self._credentials.password)

    async def _find_captcha_input(self, driver: BrowserDriver) -> str:
        for selector in CAPTCHA_INPUT_SELECTORS:
            if await driver.has_element(selector):
                return selector
        # Some page builds render the input late; give the primary selector a moment.
        if await driver.wait_for(CAPTCHA_INPUT_SELECTORS[0], CAPTCHA_INPUT_WAIT_MS):
            return CAPTCHA_INPUT_SELECTORS[0]
        raise FormNotFoundError("Captcha input field not found")

    async def _submit(self, driver: BrowserDriver, tag: str):
        for selector in SUBMIT_SELECTORS:
            if not await driver.has_element(selector):
                continue
            try:
                await driver.click(selector)
                logger.info(f"{tag} Submitted via {selector}")
                return
            except Exception as e:
                logger.warning(f"{tag} Click on {selector} failed: {e}")

        logger.info(f"{tag} No submit control clicked, pressing Enter")
        await driver.press("Enter")

    async def _snapshot(self, driver: BrowserDriver) -> PageSnapshot:
        error_text = await driver.text_of(SELECTORS["login_error"])
        return PageSnapshot(
            url=await driver.current_url(),
            error_text=error_text.strip() if error_text else None,
            login_form_present=await driver.has_element(SELECTORS["login_username"]),
        )
