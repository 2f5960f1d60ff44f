"""Alert sinks for refresh failures: log, JSON-lines file and webhook."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Protocol

import aiohttp

from ..config import ALERT_LOG_FILE, ALERT_WEBHOOK_URL
from ..models.session import Alert

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class AlertSink(Protocol):
    async def send(self, alert: Alert) -> bool: ...


class LogAlertSink:
    """Always-on sink: the alert lands in the process log."""

    async def send(self, alert: Alert) -> bool:
        lines = [
            "Dianxiaomi cookie refresh FAILED",
            f"  time:    {alert.timestamp}",
            f"  host:    {alert.host} (pid {alert.pid})",
            f"  kind:    {alert.failure_kind}",
            f"  error:   {alert.message}",
        ]
        lines += [f"  - {hint}" for hint in alert.hints]
        logger.error("\n".join(lines))
        return True


class FileAlertSink:
    """Appends one JSON object per alert to a log file."""

    def __init__(self, path: Path = ALERT_LOG_FILE):
        self.path = Path(path)

    async def send(self, alert: Alert) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(alert.model_dump(mode="json"), ensure_ascii=False) + "\n")
            return True
        except OSError as e:
            logger.error(f"Could not write alert to {self.path}: {e}")
            return False


class WebhookAlertSink:
    """POSTs the alert as JSON (Slack/DingTalk/WeCom-style incoming webhooks)."""

    def __init__(self, url: str, timeout: float = 12):
        self.url = url
        self.timeout = timeout

    async def send(self, alert: Alert) -> bool:
        payload = alert.model_dump(mode="json")
        payload["text"] = f"Dianxiaomi cookie refresh failed on {alert.host}: {alert.message}"
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload) as resp:
                    if 200 <= resp.status < 300:
                        return True
                    text = await resp.text()
                    logger.warning(f"Alert webhook failed ({resp.status}): {text[:200]}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Alert webhook error: {e}")
            return False


class CompositeAlertSink:
    """Sends one alert payload to every configured channel."""

    def __init__(self, sinks: list[AlertSink]):
        self.sinks = sinks

    async def send(self, alert: Alert) -> bool:
        delivered = False
        for sink in self.sinks:
            try:
                delivered = await sink.send(alert) or delivered
            except Exception as e:
                logger.error(f"Alert sink {type(sink).__name__} crashed: {e}")
        return delivered


def sink_from_config(
    alert_log_file: Optional[Path] = ALERT_LOG_FILE,
    webhook_url: str = ALERT_WEBHOOK_URL,
) -> CompositeAlertSink:
    sinks: list[AlertSink] = [LogAlertSink()]
    if alert_log_file:
        sinks.append(FileAlertSink(alert_log_file))
    if webhook_url:
        sinks.append(WebhookAlertSink(webhook_url))
    return CompositeAlertSink(sinks)
