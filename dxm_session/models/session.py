"""Pydantic models for credentials, captcha recognition and session state."""

from __future__ import annotations

import os
import socket
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import load_credentials
from ..constants import CAPTCHA_EMPTY_TEXT, CAPTCHA_NO_TEXT
from ..session_manager.errors import (
    ConfigurationError,
    FormNotFoundError,
    LoginRejected,
    LowConfidenceCaptcha,
    NavigationError,
    RecognitionError,
    SessionKeeperError,
)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Credentials(BaseModel):
    """Platform account. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)

    @classmethod
    def from_env(cls) -> "Credentials":
        username, password = load_credentials()
        return cls(username=username, password=password)

    def validate_present(self) -> None:
        missing = [name for name in ("username", "password") if not getattr(self, name).strip()]
        if missing:
            raise ConfigurationError(f"Missing credentials: {', '.join(missing)}")

    @property
    def masked_password(self) -> str:
        return "*" * len(self.password)


class RecognitionResult(BaseModel):
    """OCR guess for one captcha image."""

    text: str
    confidence: int = Field(ge=0, le=100)
    source: str = ""
    detection_count: int = 0

    def is_usable(self, threshold: int) -> bool:
        if self.text in (CAPTCHA_NO_TEXT, CAPTCHA_EMPTY_TEXT):
            return False
        return self.confidence >= threshold


class CookieReason(str, Enum):
    VALID = "valid"
    MISSING = "missing"
    EXPIRED = "expired"
    REDIRECTED = "redirected"
    UNRECOGNIZED_RESPONSE = "unrecognized_response"
    PROBE_ERROR = "probe_error"


class CookieStatus(BaseModel):
    """Outcome of probing the platform with a cookie."""

    valid: bool
    message: str
    need_update: bool
    reason: CookieReason


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    LOW_CONFIDENCE = "low_confidence"
    LOGIN_REJECTED = "login_rejected"
    STILL_ON_LOGIN_PAGE = "still_on_login_page"
    RECOGNITION_ERROR = "recognition_error"
    NAVIGATION_ERROR = "navigation_error"
    FORM_NOT_FOUND = "form_not_found"
    BROWSER_LAUNCH_ERROR = "browser_launch_error"
    UNVERIFIED_COOKIE = "unverified_cookie"
    ERROR = "error"


_OUTCOME_ERRORS: dict[AttemptOutcome, type[SessionKeeperError]] = {
    AttemptOutcome.LOW_CONFIDENCE: LowConfidenceCaptcha,
    AttemptOutcome.LOGIN_REJECTED: LoginRejected,
    AttemptOutcome.STILL_ON_LOGIN_PAGE: LoginRejected,
    AttemptOutcome.RECOGNITION_ERROR: RecognitionError,
    AttemptOutcome.NAVIGATION_ERROR: NavigationError,
    AttemptOutcome.FORM_NOT_FOUND: FormNotFoundError,
}


class LoginAttempt(BaseModel):
    """In-memory record of one login try. Never persisted."""

    sequence: int
    outcome: AttemptOutcome
    message: str = ""
    captcha_text: Optional[str] = None
    confidence: Optional[int] = None
    final_url: Optional[str] = None
    cookie: Optional[str] = Field(default=None, repr=False)
    cookie_count: int = 0
    started_at: str = Field(default_factory=_utcnow)

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS and bool(self.cookie)

    def raise_for_failure(self) -> None:
        """Raise the error class matching a failed outcome; no-op on success."""
        if self.succeeded:
            return
        error_cls = _OUTCOME_ERRORS.get(self.outcome, SessionKeeperError)
        raise error_cls(f"Login attempt {self.sequence} failed ({self.outcome.value}): {self.message}")

    def summary(self) -> dict:
        return self.model_dump(mode="json", exclude={"cookie"}, exclude_none=True)


class RefreshAction(str, Enum):
    NO_REFRESH_NEEDED = "no_refresh_needed"
    REFRESHED = "refreshed"
    REFRESH_FAILED = "refresh_failed"


class RefreshOutcome(BaseModel):
    """Result of one orchestration run, reported to the scheduler."""

    success: bool
    action: RefreshAction
    message: str
    cookie_length: Optional[int] = None
    attempts: int = 0
    verified: Optional[bool] = None
    failure_kind: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class Alert(BaseModel):
    """Payload emitted to the notification channel when a refresh fails."""

    timestamp: str = Field(default_factory=_utcnow)
    host: str = Field(default_factory=socket.gethostname)
    pid: int = Field(default_factory=os.getpid)
    message: str
    failure_kind: str
    attempts: list[dict] = Field(default_factory=list)
    hints: list[str] = Field(default_factory=list)


class HealthCheckItem(BaseModel):
    name: str
    ok: bool
    message: str = ""
    duration_ms: int = 0


class HealthReport(BaseModel):
    ok: bool
    checks: list[HealthCheckItem] = Field(default_factory=list)
    system: dict = Field(default_factory=dict)
    checked_at: str = Field(default_factory=_utcnow)
