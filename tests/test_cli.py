from typer.testing import CliRunner

import thinklab.cli as cli
from thinklab import __version__
from thinklab.cli import app
from thinklab.daemon.ledger import store
from thinklab.daemon.pricing import ActionKind

runner = CliRunner()


class TestAccountCommands:
    def test_create_grant_balance(self, ledger_db):
        result = runner.invoke(app, ["account", "create", "cli-user", "--balance", "12"])
        assert result.exit_code == 0, result.output
        assert "created with 12 credits" in result.output

        result = runner.invoke(app, ["account", "grant", "cli-user", "8", "--reason", "support credit"])
        assert result.exit_code == 0, result.output
        assert store.get_balance("cli-user") == 20

        result = runner.invoke(app, ["account", "balance", "cli-user"])
        assert result.exit_code == 0
        assert "20 credits" in result.output

    def test_create_uses_default_starting_balance(self, ledger_db):
        result = runner.invoke(app, ["account", "create", "defaulted"])
        assert result.exit_code == 0, result.output
        assert store.get_balance("defaulted") == 10

    def test_unknown_account_fails(self, ledger_db):
        assert runner.invoke(app, ["account", "balance", "ghost"]).exit_code == 1
        assert runner.invoke(app, ["account", "grant", "ghost", "5"]).exit_code == 1
        assert runner.invoke(app, ["account", "deactivate", "ghost"]).exit_code == 1

    def test_history_and_deactivate(self, ledger_db):
        store.provision_account("hist", starting_balance=10)
        record = store.reserve("hist", ActionKind.TEXT_SUMMARIZATION, 3)
        store.commit(record.record_id, {"summary": "s"})

        result = runner.invoke(app, ["account", "history", "hist"])
        assert result.exit_code == 0, result.output
        assert "text-summarization" in result.output

        result = runner.invoke(app, ["account", "deactivate", "hist"])
        assert result.exit_code == 0
        assert store.get_account("hist").active is False


class TestOpsCommands:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_pricing(self):
        result = runner.invoke(app, ["pricing"])
        assert result.exit_code == 0
        assert "seo-optimization" in result.output

    def test_reconcile_refunds_stale_records(self, ledger_db):
        store.provision_account("stale", starting_balance=10)
        store.reserve("stale", ActionKind.TEXT_GENERATION, 5)

        result = runner.invoke(app, ["reconcile", "--stale-after", "0"])
        assert result.exit_code == 0, result.output
        assert store.get_balance("stale") == 10

    def test_analytics(self, ledger_db):
        store.provision_account("a1", starting_balance=10)
        result = runner.invoke(app, ["analytics"])
        assert result.exit_code == 0, result.output
        assert "1 active" in result.output

    def test_init_writes_default_config(self, ledger_db, tmp_path, monkeypatch):
        home = tmp_path / "home"
        monkeypatch.setattr(cli, "THINKLAB_DIR", home)
        monkeypatch.setattr(cli, "LOG_DIR", home / "logs")
        monkeypatch.setattr(cli, "CONFIG_DIR", home / "config")
        monkeypatch.setattr(cli, "CONFIG_FILE", home / "config" / "thinklab.yaml")

        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0, result.output
        assert "text-generation: 5" in (home / "config" / "thinklab.yaml").read_text()
        assert (home / "logs").is_dir()
