"""Shared pytest fixtures and utilities for Veggie Market POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from veggie_pos import cli, constants, core_logic, data_manager  # noqa: E402
from veggie_pos.cart import CartSession  # noqa: E402
from veggie_pos.models import Customer, Product  # noqa: E402
from veggie_pos.setup_excel import create_master_workbook  # noqa: E402
from veggie_pos.state import PosState, Store  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_OPERATOR = "Front Counter"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "MarketName = {market_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "Operator = {operator}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    operator: str
    schema_version: str
    market_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an empty market workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "veggie_market.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        market_name: str = "Test Market",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        operator: str = DEFAULT_OPERATOR,
        extra: str = "",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                market_name=market_name,
                schema_version=schema_version,
                operator=operator,
            )
            + extra
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            operator=operator,
            schema_version=schema_version,
            market_name=market_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> Iterator[core_logic.RuntimeContext]:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    try:
        yield context
    finally:
        context.close()


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="veggie-pos", description="Veggie POS")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tomato() -> Product:
    return Product(
        product_id="P1",
        name="Tomato",
        category="Vegetables",
        price=Decimal("100"),
        unit="kg",
        stock=Decimal("10"),
        min_stock=Decimal("2"),
        barcode="8901000000011",
        supplier="Green Farms",
    )


@pytest.fixture
def onion() -> Product:
    return Product(
        product_id="P2",
        name="Onion",
        category="Vegetables",
        price=Decimal("40"),
        unit="kg",
        stock=Decimal("5"),
        min_stock=Decimal("5"),
    )


@pytest.fixture
def regular_customer() -> Customer:
    return Customer(
        customer_id="C1",
        name="Hotel Sunrise",
        phone="555-0101",
        customer_type=constants.CustomerType.WHOLESALE,
        credit_limit=Decimal("1000"),
        balance=Decimal("200"),
    )


@pytest.fixture
def store(tomato: Product, onion: Product, regular_customer: Customer) -> Store:
    """In-memory store seeded with two products and one customer."""

    return Store(PosState(products=(tomato, onion), customers=(regular_customer,)))


@pytest.fixture
def cart() -> CartSession:
    return CartSession()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 19, 9, 30, 15, 123456, tzinfo=UTC)


@pytest.fixture
def engine(store: Store, cart: CartSession, fixed_now: datetime) -> core_logic.SaleEngine:
    return core_logic.SaleEngine(store, cart, operator=DEFAULT_OPERATOR, clock=lambda: fixed_now)


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "veggie_market.xlsx",
        market_name="Test Market",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_operator=DEFAULT_OPERATOR,
    )


@pytest.fixture
def erp_session() -> Mock:
    """Mock HTTP session; ``headers`` is a real dict so updates are visible."""

    session = Mock(name="session")
    session.headers = {}
    return session


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
