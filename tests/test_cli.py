"""
Tests for the operator CLI.
"""

import asyncio
import json

import pytest

import api.logging_config
from api import config as config_module
from api.database import BatchRunsRepo, init_database
from campaigns.__main__ import main


@pytest.fixture(autouse=True)
def quiet_cli(tmp_path, monkeypatch):
    monkeypatch.setattr(api.logging_config, "setup_logging", lambda *a, **kw: None)
    monkeypatch.setattr(config_module.config, "DATABASE_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setattr("dotenv.load_dotenv", lambda *a, **kw: False)
    return tmp_path / "cli.db"


class TestCli:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_adapters_list(self, plugin_root, capsys):
        candidate = plugin_root / "dice"
        candidate.mkdir()
        (candidate / "plugin.json").write_text(json.dumps({
            "name": "dice", "version": "2.0.0", "keywords": ["openorbit-adapter"], "platform": "dice.com",
        }))

        assert main(["adapters", "list", "--root", str(plugin_root)]) == 0

        out = capsys.readouterr().out
        assert "dice" in out
        assert "dice.com" in out

    def test_adapters_list_empty(self, plugin_root, capsys):
        assert main(["adapters", "list", "--root", str(plugin_root)]) == 0
        assert "No adapters found" in capsys.readouterr().out

    def test_runs_list_and_recover(self, quiet_cli, capsys):
        async def seed():
            await init_database(quiet_cli)
            await BatchRunsRepo(quiet_cli).create("run-1", "valuation_enrichment", "pipe-1", 3)
        asyncio.run(seed())

        assert main(["runs", "list"]) == 0
        assert "run-1" in capsys.readouterr().out

        assert main(["runs", "recover"]) == 0
        assert "Recovered 1" in capsys.readouterr().out

        assert main(["runs", "show", "run-1"]) == 0
        out = capsys.readouterr().out
        assert "failed" in out
        assert "Interrupted" in out

    def test_runs_show_missing(self, capsys):
        assert main(["runs", "show", "nope"]) == 1
        assert "Run not found" in capsys.readouterr().out

    def test_validate(self, monkeypatch, capsys):
        assert main(["validate"]) == 0

        monkeypatch.setattr(config_module.config, "SCREENCAST_QUALITY", 150)
        assert main(["validate"]) == 1
        assert "SCREENCAST_QUALITY" in capsys.readouterr().out
