"""
Pytest fixtures for the stock counting test suite.

Provides:
- Deterministic clock and the default counting policy
- A catalog of one item per counting workflow
- In-memory store, lifecycle tracker and reconciler
- An in-memory SQLite session for the SQLAlchemy adapter
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from stock_config import get_active_policy
from stock_engines.registry import WorkflowRegistry
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.containers import ContainerInstance
from stock_kernel.domain.items import CountingWorkflow, InventoryItem
from stock_kernel.logging_config import LogContext, reset_logging
from stock_kernel.services.lifecycle_tracker import LifecycleTracker
from stock_kernel.services.reconciliation_service import CountReconciler
from stock_kernel.services.storage import InMemoryCountStore, InMemoryItemCatalog

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_log_context():
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


# ---------------------------------------------------------------------------
# Policy, clock, items
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def policy():
    return get_active_policy()


@pytest.fixture(scope="session")
def registry(policy):
    return WorkflowRegistry.from_policy(policy)


@pytest.fixture
def clock():
    return DeterministicClock(NOW)


@pytest.fixture
def flour():
    return InventoryItem(
        item_id="flour",
        name="Flour",
        workflow=CountingWorkflow.CONTAINER_WEIGHT,
        recipe_unit="g",
        typical_unit_weight_grams=Decimal("1"),
        default_container_category="bulk_bin",
    )


@pytest.fixture
def wine():
    return InventoryItem(
        item_id="house-red",
        name="House Red",
        workflow=CountingWorkflow.BOTTLE_HYBRID,
        recipe_unit="bottles",
        bottle_volume_ml=Decimal("750"),
        full_bottle_weight_grams=Decimal("1500"),
        empty_bottle_weight_grams=Decimal("500"),
    )


@pytest.fixture
def lager():
    return InventoryItem(
        item_id="lager",
        name="Lager",
        workflow=CountingWorkflow.KEG_WEIGHT,
        recipe_unit="L",
        keg_volume_liters=Decimal("50"),
        empty_keg_weight_grams=Decimal("13300"),
        keg_freshness_days=14,
        keg_storage_temp_min=Decimal("2"),
        keg_storage_temp_max=Decimal("6"),
    )


@pytest.fixture
def sauce():
    return InventoryItem(
        item_id="tomato-sauce",
        name="Tomato Sauce",
        workflow=CountingWorkflow.BATCH_WEIGHT,
        recipe_unit="g",
        typical_unit_weight_grams=Decimal("1"),
        batch_use_by_days=5,
    )


@pytest.fixture
def lemons():
    return InventoryItem(
        item_id="lemons",
        name="Lemons",
        workflow=CountingWorkflow.UNIT_COUNT,
        recipe_unit="each",
    )


@pytest.fixture
def catalog(flour, wine, lager, sauce, lemons):
    return InMemoryItemCatalog([flour, wine, lager, sauce, lemons])


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    return InMemoryCountStore()


@pytest.fixture
def tracker(store, policy, clock):
    return LifecycleTracker(store, policy, clock)


@pytest.fixture
def bin_container(tracker, clock):
    """A current, never-used 850 g bulk bin registered as C-1."""
    return tracker.register_container(
        ContainerInstance(
            container_id="C-1",
            barcode="BIN-0001",
            tare_weight_grams=Decimal("850"),
            last_weighed_date=clock.now(),
            category="bulk_bin",
        )
    )


@pytest.fixture
def reconciler(policy, registry, catalog, store, clock, tracker):
    return CountReconciler(
        policy=policy,
        registry=registry,
        catalog=catalog,
        store=store,
        clock=clock,
        tracker=tracker,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def session():
    init_engine_from_url("sqlite://")
    create_tables()
    db_session = get_session()
    try:
        yield db_session
    finally:
        db_session.rollback()
        db_session.close()
        drop_tables()
        reset_engine()
