"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

from .session_manager.errors import ConfigurationError

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
COOKIE_FILE = Path(os.getenv("DXM_COOKIE_FILE", DATA_DIR / "dianxiaomi-current-cookie.txt"))
COOKIE_DB_PATH = Path(os.getenv("DXM_COOKIE_DB", DATA_DIR / "session.db"))
LOG_DIR = Path(os.getenv("LOG_DIR", DATA_DIR / "logs"))
ALERT_LOG_FILE = Path(os.getenv("ALERT_LOG_FILE", LOG_DIR / "dxm-cookie-alert.log"))

# Cookie store: "file" or "sqlite"
COOKIE_BACKEND = os.getenv("DXM_COOKIE_BACKEND", "file").lower()

# Browser
BROWSER_ENGINE = os.getenv("BROWSER_ENGINE", "chromium").lower()  # chromium | camoufox
BROWSER_HEADLESS = _env_bool("BROWSER_HEADLESS", "true")
BROWSER_TIMEOUT = int(os.getenv("BROWSER_TIMEOUT", "30000"))  # ms, per navigation
BROWSER_SESSION_TIMEOUT = float(os.getenv("BROWSER_SESSION_TIMEOUT", "120"))  # s, whole attempt
BROWSER_EXECUTABLE_PATH = os.getenv("BROWSER_EXECUTABLE_PATH") or None

# Login
CAPTCHA_CONFIDENCE_THRESHOLD = int(os.getenv("CAPTCHA_CONFIDENCE_THRESHOLD", "50"))
LOGIN_SETTLE_DELAY = float(os.getenv("LOGIN_SETTLE_DELAY", "5"))
MAX_RETRIES = int(os.getenv("DXM_MAX_RETRIES", "2"))
RETRY_DELAY = float(os.getenv("DXM_RETRY_DELAY", "3"))
REQUIRE_VERIFIED_COOKIE = _env_bool("DXM_REQUIRE_VERIFIED_COOKIE", "false")

# Probe / health
PROBE_TIMEOUT = float(os.getenv("PROBE_TIMEOUT", "10"))
HEALTH_TIMEOUT = float(os.getenv("HEALTH_TIMEOUT", "10"))

# Alerts
ALERT_WEBHOOK_URL = os.getenv("ALERT_WEBHOOK_URL", "")

# OCR
TENCENT_REGION = os.getenv("TENCENT_REGION", "ap-beijing")
TENCENT_OCR_ENDPOINT = os.getenv("TENCENT_OCR_ENDPOINT", "ocr.tencentcloudapi.com")


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    COOKIE_FILE.parent.mkdir(parents=True, exist_ok=True)
    ALERT_LOG_FILE.parent.mkdir(parents=True, exist_ok=True)


def _require(*names: str) -> dict[str, str]:
    values = {name: (os.getenv(name) or "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Set them in .env; never hard-code credentials."
        )
    return values


def load_credentials() -> tuple[str, str]:
    """Return (username, password) for the platform account."""
    values = _require("DIANXIAOMI_USERNAME", "DIANXIAOMI_PASSWORD")
    return values["DIANXIAOMI_USERNAME"], values["DIANXIAOMI_PASSWORD"]


def load_ocr_settings() -> dict[str, str]:
    """Return the Tencent Cloud OCR credentials plus region and endpoint."""
    values = _require("TENCENT_SECRET_ID", "TENCENT_SECRET_KEY")
    return {
        "secret_id": values["TENCENT_SECRET_ID"],
        "secret_key": values["TENCENT_SECRET_KEY"],
        "region": TENCENT_REGION,
        "endpoint": TENCENT_OCR_ENDPOINT,
    }
