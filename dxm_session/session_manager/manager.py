"""Refresh orchestrator: the cron-driven control loop around login and store.

Flow per run:
    check stored cookie -> valid?  done (no browser)
                        -> invalid? login up to max_retries times,
                                    save + re-probe on the first success,
                                    alert once if every attempt failed.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

import aiosqlite

from ..config import MAX_RETRIES, REQUIRE_VERIFIED_COOKIE, RETRY_DELAY, ensure_dirs
from ..constants import ALERT_HINTS
from ..models.session import (
    Alert,
    AttemptOutcome,
    Credentials,
    LoginAttempt,
    RefreshAction,
    RefreshOutcome,
)
from .alerts import AlertSink, sink_from_config
from .browser import BrowserLoginSession, DriverFactory
from .captcha import CaptchaSolver, OcrProvider, TencentOcrProvider
from .driver import launch_driver
from .errors import ConfigurationError, SessionKeeperError
from .store import SessionStore

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

CREDENTIALS_SUSPECT = "credentials_suspect"


class RefreshOrchestrator:
    """Keeps the stored session cookie valid; one `refresh()` per scheduler tick."""

    def __init__(
        self,
        store: SessionStore,
        login_session: BrowserLoginSession,
        alert_sink: AlertSink,
        *,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        require_verified: bool = REQUIRE_VERIFIED_COOKIE,
    ):
        if max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        self.store = store
        self.login_session = login_session
        self.alert_sink = alert_sink
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.require_verified = require_verified
        self.attempts: list[LoginAttempt] = []

    async def refresh(self) -> RefreshOutcome:
        logger.info("Checking current cookie...")
        status = await self.store.check()
        if status.valid:
            logger.info("Cookie still valid, no refresh needed.")
            return RefreshOutcome(
                success=True,
                action=RefreshAction.NO_REFRESH_NEEDED,
                message=f"Cookie still valid: {status.message}",
            )

        logger.warning(f"Cookie needs refresh ({status.reason.value}): {status.message}")
        self.attempts = []

        for sequence in range(1, self.max_retries + 1):
            logger.info(f"Login attempt {sequence}/{self.max_retries}...")
            attempt = await self._attempt(sequence)
            self.attempts.append(attempt)

            if attempt.succeeded:
                outcome = await self._persist(attempt)
                if outcome is not None:
                    return outcome

            if sequence < self.max_retries:
                logger.info(f"Retrying in {self.retry_delay}s...")
                await asyncio.sleep(self.retry_delay)

        return await self._fail()

    async def _attempt(self, sequence: int) -> LoginAttempt:
        """Run one login and fold any raised error into a tagged attempt record."""
        try:
            attempt = await self.login_session.login(sequence)
        except ConfigurationError:
            raise
        except SessionKeeperError as e:
            logger.error(f"Attempt {sequence} failed [{e.kind}]: {e}")
            try:
                outcome = AttemptOutcome(e.kind)
            except ValueError:
                outcome = AttemptOutcome.ERROR
            return LoginAttempt(sequence=sequence, outcome=outcome, message=str(e))
        except Exception as e:
            logger.exception(f"Attempt {sequence} crashed [unexpected]: {e}")
            return LoginAttempt(
                sequence=sequence,
                outcome=AttemptOutcome.ERROR,
                message=f"{type(e).__name__}: {e}",
            )

        if not attempt.succeeded:
            logger.warning(f"Attempt {sequence} failed [{attempt.outcome.value}]: {attempt.message}")
        return attempt

    async def _persist(self, attempt: LoginAttempt) -> Optional[RefreshOutcome]:
        """Save the new cookie and re-probe it.

        Returns the final outcome, or None when the attempt should count as
        failed and the loop should continue.
        """
        cookie = attempt.cookie
        try:
            await self.store.save(cookie)
        except (OSError, ValueError, aiosqlite.Error) as e:
            logger.error(f"Attempt {attempt.sequence}: could not save cookie: {e}")
            attempt.outcome = AttemptOutcome.ERROR
            attempt.message = f"Cookie save failed: {e}"
            return None

        logger.info(f"Cookie refreshed ({len(cookie)} chars), re-probing...")
        confirm = await self.store.check(cookie)
        if confirm.valid:
            logger.info("New cookie confirmed by probe.")
            return RefreshOutcome(
                success=True,
                action=RefreshAction.REFRESHED,
                message="Cookie refreshed",
                cookie_length=len(cookie),
                attempts=len(self.attempts),
                verified=True,
            )

        logger.warning(
            f"New cookie saved but re-probe disagrees ({confirm.reason.value}): {confirm.message}"
        )
        if self.require_verified:
            attempt.outcome = AttemptOutcome.UNVERIFIED_COOKIE
            attempt.message = f"Re-probe rejected new cookie: {confirm.message}"
            return None

        return RefreshOutcome(
            success=True,
            action=RefreshAction.REFRESHED,
            message=f"Cookie refreshed; re-probe not confirmed ({confirm.message})",
            cookie_length=len(cookie),
            attempts=len(self.attempts),
            verified=False,
        )

    def _failure_kind(self) -> str:
        outcomes = {a.outcome for a in self.attempts}
        if outcomes == {AttemptOutcome.LOGIN_REJECTED}:
            # Repeated explicit rejections point at the account, not at captcha luck.
            return CREDENTIALS_SUSPECT
        return self.attempts[-1].outcome.value

    async def _fail(self) -> RefreshOutcome:
        kind = self._failure_kind()
        last = self.attempts[-1]
        message = f"Login failed after {len(self.attempts)} attempts (last: {last.outcome.value}: {last.message})"
        logger.error(f"Cookie refresh failed [{kind}]: {message}")

        alert = Alert(
            message=message,
            failure_kind=kind,
            attempts=[a.summary() for a in self.attempts],
            hints=ALERT_HINTS,
        )
        if not await self.alert_sink.send(alert):
            logger.error("Alert could not be delivered to any channel")

        return RefreshOutcome(
            success=False,
            action=RefreshAction.REFRESH_FAILED,
            message=message,
            attempts=len(self.attempts),
            failure_kind=kind,
        )


def build_orchestrator(
    *,
    credentials: Optional[Credentials] = None,
    ocr_provider: Optional[OcrProvider] = None,
    driver_factory: DriverFactory = launch_driver,
    store: Optional[SessionStore] = None,
    alert_sink: Optional[AlertSink] = None,
) -> RefreshOrchestrator:
    """Wire the production object graph from config.

    Credentials and OCR keys are resolved here so a misconfigured host fails
    with ConfigurationError before any browser is launched.
    """
    ensure_dirs()
    credentials = credentials or Credentials.from_env()
    solver = CaptchaSolver(ocr_provider or TencentOcrProvider.from_env())
    login_session = BrowserLoginSession(credentials, solver, driver_factory)
    return RefreshOrchestrator(
        store=store or SessionStore(),
        login_session=login_session,
        alert_sink=alert_sink or sink_from_config(),
    )
