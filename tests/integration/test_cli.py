"""
Integration tests for the click command line.
"""
import json

import pytest
from click.testing import CliRunner

from main import cli
from pipeline.database import Database

CHIPS = "6291234567890"


@pytest.fixture
def runner(temp_dir, monkeypatch) -> CliRunner:
    monkeypatch.setenv("OUTPUT_DIR", str(temp_dir / "output"))
    monkeypatch.setenv("DB_PATH", str(temp_dir / "output" / "lpo.db"))
    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))
    monkeypatch.setenv("LPO_INBOX_DIR", str(temp_dir / "lpos"))
    monkeypatch.delenv("BRAND_SYNC_URL", raising=False)
    return CliRunner()


@pytest.fixture
def lpo_file(temp_dir, sample_lpo_text):
    path = temp_dir / "lpo.txt"
    path.write_text(sample_lpo_text, encoding="utf-8")
    return path


@pytest.mark.integration
class TestCli:

    def test_check(self, runner):
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 0
        assert "Pipeline Setup Check" in result.output

    def test_ingest_then_show(self, runner, lpo_file):
        result = runner.invoke(cli, ["ingest", str(lpo_file)])
        assert result.exit_code == 0, result.output

        result = runner.invoke(cli, ["show", "PO-458812", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["summary"]["ordered_total"] == pytest.approx(204.75)

    def test_show_unknown(self, runner):
        result = runner.invoke(cli, ["show", "PO-NOPE"])
        assert result.exit_code == 1

    def test_save_invoice_and_sync(self, runner, lpo_file):
        runner.invoke(cli, ["ingest", str(lpo_file)])
        result = runner.invoke(cli, [
            "save-invoice", "PO-458812",
            "--invoice-number", "INV-889", "--invoice-date", "2026-02-06",
            "-d", f"{CHIPS}=10", "--commission-pct", "12", "--sync",
        ])

        assert result.exit_code == 0, result.output
        assert "Saved invoice INV-889" in result.output
        assert "Brand sync: 2 row(s)" in result.output

        result = runner.invoke(cli, ["sync", "PO-458812"])
        assert result.exit_code == 0
        assert "2 replaced" in result.output

    def test_save_invoice_requires_number(self, runner, lpo_file):
        runner.invoke(cli, ["ingest", str(lpo_file)])
        result = runner.invoke(cli, ["save-invoice", "PO-458812", "--invoice-date", "2026-02-06"])
        assert result.exit_code == 1

    def test_failed_lines_exit_nonzero(self, runner, lpo_file, monkeypatch):
        runner.invoke(cli, ["ingest", str(lpo_file)])
        monkeypatch.setattr(Database, "patch_line_item", lambda self, item_id, fields: False)

        result = runner.invoke(cli, [
            "save-invoice", "PO-458812", "--invoice-number", "INV-1", "--invoice-date", "2026-02-06",
        ])
        assert result.exit_code == 1
        assert "Failed lines" in result.output

    def test_bad_delivery_argument(self, runner, lpo_file):
        runner.invoke(cli, ["ingest", str(lpo_file)])
        result = runner.invoke(cli, [
            "save-invoice", "PO-458812", "--invoice-number", "INV-1",
            "--invoice-date", "2026-02-06", "-d", "nonsense",
        ])
        assert result.exit_code == 2

    def test_import_and_health(self, runner, sample_sku_csv):
        result = runner.invoke(cli, ["import-skus", str(sample_sku_csv)])
        assert result.exit_code == 0
        assert "Inserted: 3" in result.output

        result = runner.invoke(cli, ["catalog-health", "--list"])
        assert result.exit_code == 0
        assert "total:  3" in result.output

    def test_add_sku(self, runner):
        args = [
            "add-sku", "--barcode", CHIPS, "--client", "Acme Foods", "--brand", "Crispy",
            "--sku-name", "Chips", "--case-pack", "12", "--shelf-life", "9 months",
            "--talabat-sku", "TB-1",
        ]
        assert runner.invoke(cli, args).exit_code == 0
        # second add hits the duplicate barcode
        assert runner.invoke(cli, args).exit_code == 1
