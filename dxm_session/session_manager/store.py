"""Session-cookie persistence and behavioural validity probing.

The platform issues no expiry metadata and has no "am I logged in" endpoint,
so a cookie is judged only by whether a real authenticated request succeeds.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import aiosqlite
import httpx

from ..config import COOKIE_BACKEND, COOKIE_DB_PATH, COOKIE_FILE, PROBE_TIMEOUT
from ..constants import DXM_PROBE_URL, PROBE_FORM, PROBE_HEADERS, PROBE_SUCCESS_FIELD
from ..database.models import initialize_db
from ..database.repository import CookieRepository
from ..models.session import CookieReason, CookieStatus
from .errors import ConfigurationError, ProbeFailure

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


# ── Storage backends ─────────────────────────────────────────────────────────


class CookieBackend(Protocol):
    location: str

    async def load_cookie(self) -> Optional[str]: ...

    async def save_cookie(self, cookie: str) -> None: ...


class FileCookieBackend:
    """Plain-text file holding exactly one cookie string."""

    def __init__(self, path: Path = COOKIE_FILE):
        self.path = Path(path)
        self.location = str(self.path.resolve())

    async def load_cookie(self) -> Optional[str]:
        if not self.path.exists():
            return None
        with self.path.open(encoding="utf-8", newline="") as handle:
            cookie = handle.read()
        return cookie if cookie.strip() else None

    async def save_cookie(self, cookie: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write beside the target then rename, so readers never see a partial cookie.
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(cookie)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise


class SqliteCookieBackend:
    """Single-row SQLite table via aiosqlite."""

    def __init__(self, db_path: Path = COOKIE_DB_PATH):
        self.db_path = Path(db_path)
        self.location = f"sqlite://{self.db_path.resolve()}"

    async def _connect(self) -> aiosqlite.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self.db_path))
        await initialize_db(db)
        return db

    async def load_cookie(self) -> Optional[str]:
        db = await self._connect()
        try:
            return await CookieRepository(db).get_cookie()
        finally:
            await db.close()

    async def save_cookie(self, cookie: str) -> None:
        db = await self._connect()
        try:
            await CookieRepository(db).replace_cookie(cookie)
        finally:
            await db.close()


def backend_from_config(kind: str = COOKIE_BACKEND) -> CookieBackend:
    if kind == "file":
        return FileCookieBackend()
    if kind == "sqlite":
        return SqliteCookieBackend()
    raise ConfigurationError(f"Unknown cookie backend '{kind}' (expected 'file' or 'sqlite')")


# ── Store ────────────────────────────────────────────────────────────────────


class SessionStore:
    """Single-writer slot for the authoritative session cookie."""

    def __init__(
        self,
        backend: Optional[CookieBackend] = None,
        *,
        probe_url: str = DXM_PROBE_URL,
        probe_timeout: float = PROBE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.backend = backend or backend_from_config()
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._transport = transport

    async def load(self) -> Optional[str]:
        """Return the last persisted cookie, or None."""
        try:
            return await self.backend.load_cookie()
        except (OSError, UnicodeDecodeError, aiosqlite.Error) as e:
            logger.error(f"Failed to load cookie from {self.backend.location}: {e}")
            return None

    async def save(self, cookie: str) -> None:
        """Replace the persisted cookie. Raises if the write fails."""
        if not cookie:
            raise ValueError("Refusing to save an empty cookie")
        await self.backend.save_cookie(cookie)
        logger.info(f"Saved cookie ({len(cookie)} chars) to {self.backend.location}")

    async def check(self, cookie: Optional[str] = None) -> CookieStatus:
        """Probe the platform with `cookie` (or the stored one). Never raises."""
        test_cookie = cookie if cookie is not None else await self.load()
        if not test_cookie:
            return CookieStatus(
                valid=False, message="No cookie found", need_update=True, reason=CookieReason.MISSING
            )

        logger.info("Probing cookie validity...")
        try:
            response = await self._probe(test_cookie)
        except ProbeFailure as e:
            logger.warning(f"Cookie probe failed: {e}")
            return CookieStatus(
                valid=False,
                message=f"Probe failed: {e}",
                need_update=True,
                reason=CookieReason.PROBE_ERROR,
            )

        status = self._classify(response)
        log = logger.info if status.valid else logger.warning
        log(f"Cookie probe: {status.reason.value} - {status.message}")
        return status

    async def _probe(self, cookie: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.probe_timeout,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                return await client.post(
                    self.probe_url,
                    data=PROBE_FORM,
                    headers={**PROBE_HEADERS, "Cookie": cookie},
                )
        except httpx.TimeoutException as e:
            raise ProbeFailure(f"timed out after {self.probe_timeout}s") from e
        except httpx.HTTPError as e:
            raise ProbeFailure(str(e) or type(e).__name__) from e

    @staticmethod
    def _classify(response: httpx.Response) -> CookieStatus:
        code = response.status_code

        if 300 <= code < 400:
            return CookieStatus(
                valid=False,
                message=f"Cookie expired (redirected to {response.headers.get('location', 'login')})",
                need_update=True,
                reason=CookieReason.REDIRECTED,
            )
        if code in (401, 403):
            return CookieStatus(
                valid=False,
                message=f"Cookie expired (HTTP {code})",
                need_update=True,
                reason=CookieReason.EXPIRED,
            )
        if not 200 <= code < 300:
            return CookieStatus(
                valid=False,
                message=f"Probe failed: HTTP {code}",
                need_update=True,
                reason=CookieReason.PROBE_ERROR,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get(PROBE_SUCCESS_FIELD):
            return CookieStatus(valid=True, message="Cookie valid", need_update=False, reason=CookieReason.VALID)

        return CookieStatus(
            valid=False,
            message=f"Cookie probably expired (no '{PROBE_SUCCESS_FIELD}' in probe response)",
            need_update=True,
            reason=CookieReason.UNRECOGNIZED_RESPONSE,
        )

    # ── Helpers for manual maintenance ──────────────────────────────────────

    async def update_from_browser(self, cookie: str) -> CookieStatus:
        """Validate a cookie copied out of a logged-in browser and store it if accepted."""
        cookie = cookie.strip()
        status = await self.check(cookie)
        if status.valid:
            await self.save(cookie)
            logger.info("Cookie updated from browser copy.")
        else:
            logger.warning(f"Rejected browser cookie: {status.message}")
        return status

    async def get_valid_cookie(self) -> Optional[str]:
        """Return the stored cookie if the platform still accepts it."""
        cookie = await self.load()
        if cookie and (await self.check(cookie)).valid:
            return cookie
        return None

    async def status_report(self) -> dict:
        cookie = await self.load()
        report = {
            "location": self.backend.location,
            "present": bool(cookie),
            "cookie_length": len(cookie) if cookie else 0,
            "preview": (cookie[:100] + "...") if cookie and len(cookie) > 100 else cookie,
        }
        status = await self.check(cookie or "")
        report.update(status.model_dump(mode="json"))
        return report
