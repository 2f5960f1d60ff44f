"""Command-line entry point, meant to be run from cron.

    dxm-session                 # same as `dxm-session refresh`
    dxm-session refresh --preflight
    dxm-session health
    dxm-session login
    dxm-session status
    dxm-session set-cookie "a=1; b=2"

Exit status: 0 ok / no-op, 1 failure, 2 configuration error, 3 preflight failed.
"""

import asyncio
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Annotated

import typer

from .config import LOG_DIR, ensure_dirs
from .session_manager.errors import ConfigurationError, SessionKeeperError
from .session_manager.health import HealthCheck
from .session_manager.manager import build_orchestrator
from .session_manager.store import SessionStore

EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_PREFLIGHT = 3

package_logger = logging.getLogger("dxm_session")

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

app = typer.Typer(
    name="dxm-session",
    help="Keep the Dianxiaomi session cookie alive (captcha login + validity probe).",
    add_completion=False,
)


def configure_logging(log_dir=LOG_DIR) -> None:
    """Mirror every dxm_session.* log line into a rotating file."""
    if any(isinstance(h, RotatingFileHandler) for h in package_logger.handlers):
        return
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "dxm-session.log", maxBytes=20 * 1024 * 1024, backupCount=14, encoding="utf-8"
        )
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")
        return
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    package_logger.addHandler(file_handler)
    package_logger.setLevel(logging.INFO)


def _echo_json(data: dict) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


async def _run_refresh(preflight: bool) -> int:
    orchestrator = build_orchestrator()
    if preflight:
        report = await HealthCheck().run()
        if not report.ok:
            _echo_json(report.model_dump(mode="json"))
            logger.error("Preflight health check failed; skipping refresh.")
            return EXIT_PREFLIGHT

    outcome = await orchestrator.refresh()
    _echo_json(outcome.model_dump(mode="json", exclude_none=True))
    return outcome.exit_code


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    configure_logging()
    if ctx.invoked_subcommand is None:
        refresh(preflight=False)


@app.command(help="Check the stored cookie and log in again if the platform rejects it.")
def refresh(
    preflight: Annotated[
        bool,
        typer.Option("--preflight", help="Run the health check first and abort if it fails."),
    ] = False,
) -> None:
    try:
        code = asyncio.run(_run_refresh(preflight))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(code=EXIT_CONFIG)
    raise typer.Exit(code=code)


@app.command(help="Verify the browser engine and network reachability. Never logs in.")
def health() -> None:
    report = asyncio.run(HealthCheck().run())
    _echo_json(report.model_dump(mode="json"))
    raise typer.Exit(code=0 if report.ok else EXIT_FAILURE)


@app.command(help="Force a fresh browser login (single attempt) and store the cookie.")
def login() -> None:
    async def _login() -> int:
        orchestrator = build_orchestrator()
        attempt = await orchestrator.login_session.login(1)
        _echo_json(attempt.summary())
        attempt.raise_for_failure()
        await orchestrator.store.save(attempt.cookie)
        return 0

    try:
        code = asyncio.run(_login())
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(code=EXIT_CONFIG)
    except SessionKeeperError as e:
        logger.error(f"Login failed [{e.kind}]: {e}")
        raise typer.Exit(code=EXIT_FAILURE)
    except OSError as e:
        logger.error(f"Could not store cookie: {e}")
        raise typer.Exit(code=EXIT_FAILURE)
    raise typer.Exit(code=code)


@app.command(help="Show where the cookie lives and whether the platform still accepts it.")
def status() -> None:
    try:
        store = SessionStore()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(code=EXIT_CONFIG)
    report = asyncio.run(store.status_report())
    _echo_json(report)
    raise typer.Exit(code=0 if report["valid"] else EXIT_FAILURE)


@app.command("set-cookie", help="Validate a cookie copied from a logged-in browser and store it.")
def set_cookie(
    cookie: Annotated[str, typer.Argument(help="Full Cookie header value, e.g. 'a=1; b=2'.")],
) -> None:
    ensure_dirs()
    try:
        store = SessionStore()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(code=EXIT_CONFIG)
    result = asyncio.run(store.update_from_browser(cookie))
    _echo_json(result.model_dump(mode="json"))
    raise typer.Exit(code=0 if result.valid else EXIT_FAILURE)


if __name__ == "__main__":
    app()
