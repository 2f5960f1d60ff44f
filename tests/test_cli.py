"""CLI exit codes, including the fail-fast configuration path."""

import pytest
from typer.testing import CliRunner

from conftest import GOOD_OCR, LOW_OCR, FakeDriverFactory, FakeOcrProvider, probe_transport
from dxm_session import cli
from dxm_session.models.session import HealthReport
from dxm_session.session_manager.driver import PlaywrightDriver
from dxm_session.session_manager.store import FileCookieBackend, SessionStore

runner = CliRunner()

COOKIE = "dxm_i=abc; JSESSIONID=S1"


@pytest.fixture(autouse=True)
def no_file_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


@pytest.fixture
def no_browser(monkeypatch):
    launches = []

    async def refuse(self):
        launches.append(self)
        raise AssertionError("browser must not be launched")

    monkeypatch.setattr(PlaywrightDriver, "start", refuse)
    return launches


@pytest.fixture
def wired(monkeypatch, store, alert_sink, valid_cookies):
    """Point build_orchestrator at fakes; returns the driver factory in use."""
    factory = FakeDriverFactory()
    real_build = cli.build_orchestrator

    def build(provider=None):
        orchestrator = real_build(
            ocr_provider=provider or FakeOcrProvider(GOOD_OCR),
            driver_factory=factory,
            store=store,
            alert_sink=alert_sink,
        )
        orchestrator.retry_delay = 0
        orchestrator.login_session.settle_delay = 0
        return orchestrator

    monkeypatch.setenv("DIANXIAOMI_USERNAME", "seller01")
    monkeypatch.setenv("DIANXIAOMI_PASSWORD", "s3cret-pass")
    monkeypatch.setattr(cli, "build_orchestrator", build)
    return factory


class TestConfigurationErrors:
    def test_missing_credentials_exit_2_without_browser(self, monkeypatch, no_browser):
        monkeypatch.delenv("DIANXIAOMI_USERNAME", raising=False)
        monkeypatch.delenv("DIANXIAOMI_PASSWORD", raising=False)

        result = runner.invoke(cli.app, ["refresh"])

        assert result.exit_code == cli.EXIT_CONFIG
        assert no_browser == []

    def test_bare_invocation_runs_refresh(self, monkeypatch, no_browser):
        monkeypatch.delenv("DIANXIAOMI_USERNAME", raising=False)
        monkeypatch.delenv("DIANXIAOMI_PASSWORD", raising=False)

        result = runner.invoke(cli.app, [])

        assert result.exit_code == cli.EXIT_CONFIG
        assert no_browser == []

    def test_login_without_credentials_exit_2(self, monkeypatch, no_browser):
        monkeypatch.delenv("DIANXIAOMI_PASSWORD", raising=False)

        result = runner.invoke(cli.app, ["login"])

        assert result.exit_code == cli.EXIT_CONFIG


class TestRefresh:
    def test_valid_cookie_exit_0(self, wired, store, valid_cookies):
        valid_cookies.add(COOKIE)
        store.backend.path.write_text(COOKIE, encoding="utf-8")

        result = runner.invoke(cli.app, ["refresh"])

        assert result.exit_code == 0
        assert '"no_refresh_needed"' in result.output
        assert wired.launched == []

    def test_refreshed_exit_0(self, wired, valid_cookies):
        valid_cookies.add(COOKIE)

        result = runner.invoke(cli.app, ["refresh"])

        assert result.exit_code == 0
        assert '"refreshed"' in result.output

    def test_refresh_failure_exit_1(self, wired, monkeypatch, alert_sink):
        real_build = cli.build_orchestrator
        monkeypatch.setattr(cli, "build_orchestrator", lambda: real_build(FakeOcrProvider(LOW_OCR)))

        result = runner.invoke(cli.app, ["refresh"])

        assert result.exit_code == cli.EXIT_FAILURE
        assert '"refresh_failed"' in result.output
        assert len(alert_sink.alerts) == 1

    def test_failed_preflight_exit_3(self, wired, monkeypatch):
        class FailingHealth:
            async def run(self):
                return HealthReport(ok=False)

        monkeypatch.setattr(cli, "HealthCheck", FailingHealth)

        result = runner.invoke(cli.app, ["refresh", "--preflight"])

        assert result.exit_code == cli.EXIT_PREFLIGHT
        assert wired.launched == []


class TestLogin:
    def test_login_stores_cookie(self, wired, store):
        result = runner.invoke(cli.app, ["login"])

        assert result.exit_code == 0
        assert store.backend.path.read_text(encoding="utf-8") == COOKIE
        assert COOKIE not in result.output

    def test_rejected_login_exit_1(self, wired, monkeypatch):
        real_build = cli.build_orchestrator
        monkeypatch.setattr(cli, "build_orchestrator", lambda: real_build(FakeOcrProvider(LOW_OCR)))

        result = runner.invoke(cli.app, ["login"])

        assert result.exit_code == cli.EXIT_FAILURE


class TestCookieCommands:
    @pytest.fixture
    def cli_store(self, monkeypatch, cookie_file, valid_cookies):
        store = SessionStore(FileCookieBackend(cookie_file), transport=probe_transport(valid_cookies))
        monkeypatch.setattr(cli, "SessionStore", lambda: store)
        monkeypatch.setattr(cli, "ensure_dirs", lambda: None)
        return store

    def test_set_cookie_accepts_valid_cookie(self, cli_store, cookie_file, valid_cookies):
        valid_cookies.add(COOKIE)

        result = runner.invoke(cli.app, ["set-cookie", COOKIE])

        assert result.exit_code == 0
        assert cookie_file.read_text(encoding="utf-8") == COOKIE

    def test_set_cookie_rejects_invalid_cookie(self, cli_store, cookie_file):
        result = runner.invoke(cli.app, ["set-cookie", "stale=1"])

        assert result.exit_code == cli.EXIT_FAILURE
        assert not cookie_file.exists()

    def test_status(self, cli_store, cookie_file, valid_cookies):
        cookie_file.write_text(COOKIE, encoding="utf-8")
        valid_cookies.add(COOKIE)

        result = runner.invoke(cli.app, ["status"])

        assert result.exit_code == 0
        assert '"present": true' in result.output
