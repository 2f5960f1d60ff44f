"""Exception taxonomy for the login / cookie lifecycle."""

from __future__ import annotations


class SessionKeeperError(Exception):
    """Base class for every error raised by the session keeper."""

    kind = "error"


class ConfigurationError(SessionKeeperError):
    """Missing credentials or provider keys. Fatal, never retried."""

    kind = "configuration_error"


class RecognitionError(SessionKeeperError):
    """OCR provider unreachable or returned a malformed response."""

    kind = "recognition_error"


class NavigationError(SessionKeeperError):
    """Login page did not load, or the attempt ran past its wall-clock limit."""

    kind = "navigation_error"


class FormNotFoundError(SessionKeeperError):
    """Expected login form element is absent; the page layout changed upstream."""

    kind = "form_not_found"


class BrowserLaunchError(SessionKeeperError):
    """The browser engine could not be started."""

    kind = "browser_launch_error"


class LowConfidenceCaptcha(SessionKeeperError):
    kind = "low_confidence"


class LoginRejected(SessionKeeperError):
    kind = "login_rejected"


class ProbeFailure(SessionKeeperError):
    """Network-level failure while probing cookie validity."""

    kind = "probe_error"
