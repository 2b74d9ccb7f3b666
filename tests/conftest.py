"""Shared pytest fixtures and utilities for retail ledger tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from retail_ledger import constants, core_logic, data_manager, staff  # noqa: E402
from retail_ledger.constants import EmployeeRole, PartnerType  # noqa: E402
from retail_ledger.models import Customer, Employee, Ledger, Product, WholesalePartner  # noqa: E402
from retail_ledger.setup_excel import create_ledger_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "Currency = {currency}\n"
    "InitialCash = 500\n"
    "DraftExpiryMinutes = 90\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def moment() -> datetime:
    """A fixed, timezone-aware instant used to stamp test operations."""

    return datetime(2024, 3, 14, 9, 30, tzinfo=UTC)


@pytest.fixture
def ledger(moment: datetime) -> Ledger:
    """A small store: two products, a customer, a cashier, and two partners."""

    snapshot = Ledger()
    snapshot = core_logic.add_product(
        snapshot,
        Product(id="P1", name="Kettle", category="Kitchen", price=Decimal("100"), cost_price=Decimal("60"), stock=10),
        timestamp=moment,
    )
    snapshot = core_logic.add_product(
        snapshot,
        Product(id="P2", name="Mug", category="Kitchen", price=Decimal("20"), cost_price=Decimal("12"), stock=50),
        timestamp=moment,
    )
    snapshot = core_logic.add_customer(snapshot, Customer(id="C1", name="Mona", phone="0100"), timestamp=moment)
    snapshot = staff.add_employee(
        snapshot,
        Employee(id="E1", name="Karim", role=EmployeeRole.CASHIER, base_salary=Decimal("4000")),
        timestamp=moment,
    )
    snapshot = core_logic.add_partner(
        snapshot,
        WholesalePartner(id="SUP", name="Delta Supply", contact="0111", type=PartnerType.SUPPLIER),
        timestamp=moment,
    )
    snapshot = core_logic.add_partner(
        snapshot,
        WholesalePartner(id="BUY", name="Corner Shop", contact="0122", type=PartnerType.BUYER),
        timestamp=moment,
    )
    return snapshot


# ---------------------------------------------------------------------------
# Configuration and workbook fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_ledger_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def ledger_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh, empty ledger workbook."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        currency: str = "EGP",
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        workbook_path = workbook_factory(subdir=bundle_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                currency=currency,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide configuration settings pointing at a temp workbook."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        currency="USD",
        initial_cash=Decimal("250"),
        draft_expiry_minutes=60,
    )
