"""
Pytest fixtures for the inventory costing test suite.

Provides:
- An in-memory SQLite database per test (tables created fresh, SAVEPOINT
  support enabled by build_engine)
- A DeterministicClock and the default CostingPolicy
- Factories for catalog items, receipt layers and sales-order lines
- Structured log capture

Every test gets its own engine, so services are free to commit.
"""

import json
import logging
from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from inventory_config.schema import CostingPolicy
from inventory_kernel.db.engine import build_engine, create_tables
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.models.sales_order import SalesOrderLine
from inventory_services.catalog_service import CatalogService
from inventory_services.cogs_service import COGSService
from inventory_services.receipt_ledger import ReceiptLedger

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


def utc(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, cogs_service):
            cogs_service.apply_cogs(...)
            logs = captured_logs()
            assert any(r["message"] == "cogs_run_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    sess = Session(bind=db_engine, expire_on_commit=False)
    yield sess
    sess.close()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock(utc(2024, 3, 31, 18))


@pytest.fixture
def policy() -> CostingPolicy:
    return CostingPolicy()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def catalog_service(session, test_actor_id) -> CatalogService:
    return CatalogService(session, test_actor_id)


@pytest.fixture
def receipt_ledger(session, deterministic_clock, test_actor_id) -> ReceiptLedger:
    return ReceiptLedger(session, deterministic_clock, test_actor_id)


@pytest.fixture
def cogs_service(session, policy, deterministic_clock, test_actor_id) -> COGSService:
    return COGSService(session, policy=policy, clock=deterministic_clock, actor_id=test_actor_id)


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def make_item(session, catalog_service):
    """Create a plain item, or a bundle when ``components`` is given."""

    def _make(sku: str, components: list[tuple[str, int]] | None = None, name: str = ""):
        item = catalog_service.upsert_item(sku, product_name=name or sku.title())
        if components:
            catalog_service.set_bundle_recipe(sku, components)
        session.commit()
        return item

    return _make


@pytest.fixture
def receive(session, receipt_ledger):
    """Record a purchase receipt and commit."""

    def _receive(sku: str, quantity, unit_cost, received_at: datetime | None = None):
        layer = receipt_ledger.record_receipt(
            sku, Decimal(str(quantity)), Decimal(str(unit_cost)), received_at=received_at
        )
        session.commit()
        return layer

    return _receive


@pytest.fixture
def sales_line(session):
    """Insert a sales-order line as the order import pipeline would."""

    def _line(
        order_id: str,
        sku: str,
        quantity,
        shipped_at: datetime | None = None,
        ordered_at: datetime | None = None,
        status: str = "shipped",
    ) -> SalesOrderLine:
        row = SalesOrderLine(
            order_id=order_id,
            sku=sku,
            quantity=Decimal(str(quantity)),
            shipped_at=shipped_at,
            ordered_at=ordered_at or shipped_at,
            status=status if shipped_at is not None or status != "shipped" else "open",
        )
        session.add(row)
        session.commit()
        return row

    return _line
