"""End-to-end tests for scripts/cogs_cli.py against a throwaway SQLite file."""

import csv
import importlib.util
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import build_engine, reset_engine
from inventory_kernel.models.sales_order import SalesOrderLine

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "cogs_cli.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("cogs_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    yield url
    reset_engine()


@pytest.fixture
def run(cli, db_url, capsys):
    def _run(*argv: str) -> tuple[int, str, str]:
        code = cli.main(["--db-url", db_url, *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return _run


@pytest.fixture
def add_line(db_url):
    def _add(order_id: str, sku: str, quantity, day: int) -> None:
        engine = build_engine(db_url)
        with Session(engine) as session:
            session.add(SalesOrderLine(
                order_id=order_id,
                sku=sku,
                quantity=Decimal(str(quantity)),
                ordered_at=datetime(2024, 1, day, 9, tzinfo=timezone.utc),
                shipped_at=datetime(2024, 1, day, 15, tzinfo=timezone.utc),
                status="shipped",
            ))
            session.commit()
        engine.dispose()

    return _add


@pytest.fixture
def stocked(run):
    assert run("item", "--sku", "widget", "--name", "Widget")[0] == 0
    for qty, cost, day in (("5", "10", "01"), ("10", "12", "02")):
        code, _, _ = run(
            "stock-in", "--sku", "WIDGET", "--quantity", qty, "--unit-cost", cost,
            "--received-at", f"2024-01-{day}T00:00:00+00:00",
        )
        assert code == 0


class TestItem:
    def test_plain_item(self, run):
        code, out, _ = run("item", "--sku", " mug ", "--name", "Mug")
        assert code == 0
        assert "Saved item MUG 'Mug'" in out

    def test_bundle(self, run):
        run("item", "--sku", "MUG")
        run("item", "--sku", "LID")
        code, out, _ = run("item", "--sku", "KIT", "--component", "MUG:1", "--component", "LID:2")
        assert code == 0
        assert "Saved bundle KIT" in out

    def test_bad_component_spec(self, run):
        code, _, err = run("item", "--sku", "KIT", "--component", "MUG")
        assert code == 1
        assert "SKU:QTY" in err

    def test_unknown_component(self, run):
        code, _, err = run("item", "--sku", "KIT", "--component", "NOPE:1")
        assert code == 1
        assert "UNKNOWN_SKU" in err


class TestStockIn:
    def test_receipt(self, run):
        run("item", "--sku", "WIDGET")
        code, out, _ = run("stock-in", "--sku", "WIDGET", "--quantity", "5", "--unit-cost", "2.5")
        assert code == 0
        assert "[PURCHASE]" in out

    def test_opening_balance(self, run):
        run("item", "--sku", "WIDGET")
        code, out, _ = run(
            "stock-in", "--sku", "WIDGET", "--quantity", "5", "--unit-cost", "2", "--opening"
        )
        assert code == 0
        assert "[OPENING_BALANCE]" in out

    def test_unknown_sku(self, run):
        code, _, err = run("stock-in", "--sku", "GHOST", "--quantity", "5", "--unit-cost", "2")
        assert code == 1


class TestApplyAndAudit:
    def test_apply_prints_summary(self, stocked, add_line, run):
        add_line("SO-1", "WIDGET", 8, 3)

        code, out, _ = run("apply", "--start", "2024-01-01", "--end", "2024-01-31", "--method", "FIFO")

        assert code == 0
        assert "[done]" in out
        assert "allocated:         1" in out

    def test_bad_method(self, stocked, run):
        code, _, err = run("apply", "--start", "2024-01-01", "--end", "2024-01-31", "--method", "LIFO")
        assert code == 1
        assert "INVALID_COSTING_METHOD" in err

    def test_coverage_and_export(self, stocked, add_line, run, tmp_path):
        add_line("SO-1", "WIDGET", 8, 3)
        add_line("SO-2", "WIDGET", 50, 4)
        run("apply", "--start", "2024-01-01", "--end", "2024-01-31")

        code, out, _ = run("coverage", "--start", "2024-01-01", "--end", "2024-01-31")
        assert code == 0
        assert "Coverage:         50.00%" in out

        target = tmp_path / "gaps.csv"
        code, out, _ = run(
            "export-missing", "--start", "2024-01-01", "--end", "2024-01-31", "-o", str(target)
        )
        assert code == 0
        with target.open(newline="") as handle:
            rows = list(csv.DictReader(handle))
        assert [(r["order_id"], r["sku"], r["quantity"]) for r in rows] == [("SO-2", "WIDGET", "50")]

    def test_reverse(self, stocked, add_line, run):
        add_line("SO-1", "WIDGET", 8, 3)
        run("apply", "--start", "2024-01-01", "--end", "2024-01-31")

        code, out, _ = run(
            "reverse", "--order", "SO-1", "--sku", "WIDGET", "--quantity", "3",
            "--reason", "customer return", "--no-restock",
        )

        assert code == 0
        assert "restocked=False" in out

    def test_runs_listing(self, stocked, add_line, run):
        add_line("SO-1", "WIDGET", 8, 3)
        run("apply", "--start", "2024-01-01", "--end", "2024-01-31")

        code, out, _ = run("runs")

        assert code == 0
        assert "ok=1" in out


class TestConfig:
    def test_missing_config_file(self, cli, db_url, tmp_path, capsys):
        code = cli.main(["--db-url", db_url, "--config", str(tmp_path / "none.yaml"), "runs"])
        assert code == 1
        assert "ERROR" in capsys.readouterr().err
