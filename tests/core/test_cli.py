"""
Tests for the CLI entry point.
"""
import pytest

from pm2relay import cli
from pm2relay.config import get_settings
from pm2relay.sources.pm2 import SourceUnavailableError


class UnavailableSource:
    """Source whose launch always fails."""

    def __init__(self, app_name=None):
        self.app_name = app_name

    async def start(self):
        raise SourceUnavailableError("Failed to start pm2.")

    def terminate(self):
        pass


class ExitingSource(UnavailableSource):
    """Source that starts, yields nothing and exits with code 4."""

    async def start(self):
        pass

    async def lines(self):
        for line in []:
            yield line

    async def wait(self):
        return 4


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda: None)


class TestMain:
    """Test suite for cli.main."""

    def test_missing_config_exits(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)
        get_settings.cache_clear()

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == cli.EXIT_CONFIG_ERROR

    def test_source_unavailable_exits_nonzero(self, monkeypatch):
        monkeypatch.setattr(cli, "Pm2LogSource", UnavailableSource)

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 1

    def test_exit_code_propagated(self, monkeypatch):
        monkeypatch.setattr(cli, "Pm2LogSource", ExitingSource)

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 4
