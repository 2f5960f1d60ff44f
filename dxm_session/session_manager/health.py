"""Pre-flight diagnostics: can we launch a browser and reach the platform?"""

from __future__ import annotations

import logging
import os
import platform
import socket
import sys
import time
from typing import Optional

import httpx

from ..config import HEALTH_TIMEOUT
from ..constants import DXM_BASE
from ..models.session import HealthCheckItem, HealthReport
from .browser import DriverFactory
from .driver import launch_driver

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def system_info() -> dict:
    info = {
        "hostname": socket.gethostname(),
        "platform": platform.system(),
        "release": platform.release(),
        "machine": platform.machine(),
        "python": platform.python_version(),
        "cpus": os.cpu_count(),
    }
    if hasattr(os, "getloadavg"):
        info["loadavg"] = [round(x, 2) for x in os.getloadavg()]
    return info


class HealthCheck:
    """Never logs in; only verifies the moving parts a login would need."""

    def __init__(
        self,
        driver_factory: DriverFactory = launch_driver,
        *,
        base_url: str = DXM_BASE,
        timeout: float = HEALTH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._driver_factory = driver_factory
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def run(self) -> HealthReport:
        logger.info("Running health check...")
        system = system_info()
        logger.info(
            f"Host {system['hostname']} ({system['platform']} {system['machine']}), "
            f"Python {system['python']}, {system['cpus']} CPUs"
        )

        checks = [await self.check_browser(), await self.check_network()]
        report = HealthReport(ok=all(c.ok for c in checks), checks=checks, system=system)
        if report.ok:
            logger.info("Health check passed.")
        else:
            failed = ", ".join(c.name for c in checks if not c.ok)
            logger.error(f"Health check failed: {failed}")
        return report

    async def check_browser(self) -> HealthCheckItem:
        started = time.monotonic()
        try:
            driver = await self._driver_factory()
        except Exception as e:
            logger.error(f"Browser check failed: {e}")
            return HealthCheckItem(
                name="browser", ok=False, message=f"Browser unavailable: {e}", duration_ms=_elapsed(started)
            )

        try:
            await driver.close()
        except Exception as e:
            logger.error(f"Browser did not close cleanly: {e}")
            return HealthCheckItem(
                name="browser", ok=False, message=f"Browser close failed: {e}", duration_ms=_elapsed(started)
            )

        logger.info("Browser check passed.")
        return HealthCheckItem(name="browser", ok=True, message="Browser launched and closed", duration_ms=_elapsed(started))

    async def check_network(self) -> HealthCheckItem:
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.base_url)
        except httpx.HTTPError as e:
            logger.error(f"Network check failed: {e}")
            return HealthCheckItem(
                name="network",
                ok=False,
                message=f"Cannot reach {self.base_url}: {str(e) or type(e).__name__}",
                duration_ms=_elapsed(started),
            )

        if response.status_code >= 400:
            logger.error(f"Network check failed: HTTP {response.status_code}")
            return HealthCheckItem(
                name="network",
                ok=False,
                message=f"{self.base_url} answered HTTP {response.status_code}",
                duration_ms=_elapsed(started),
            )

        logger.info("Network check passed.")
        return HealthCheckItem(
            name="network",
            ok=True,
            message=f"{self.base_url} reachable (HTTP {response.status_code})",
            duration_ms=_elapsed(started),
        )


def _elapsed(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
