"""Shared pytest fixtures and utilities for Shop Ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shop_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from shop_ledger.setup_excel import build_master_workbook, create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_EMPLOYEE_ID = "E-DEFAULT"
START_OF_DAY = datetime(2024, 1, 15, 9, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Timezone = {timezone}\n\n"
    "[Defaults]\n"
    "DefaultEmployee = {default_employee_id}\n\n"
    "[Inventory]\n"
    "AllowNegativeStock = {allow_negative_stock}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_employee_id: str
    schema_version: str
    business_name: str


class FrozenClock:
    """Callable clock for the record store that only moves when told to.

    Setting ``tick`` makes every read advance the clock by that much afterwards.
    """

    def __init__(self, moment: datetime, *, tick: timedelta = timedelta(0)) -> None:
        self.moment = moment
        self.tick = tick

    def __call__(self) -> datetime:
        current = self.moment
        self.moment += self.tick
        return current

    def advance(self, **delta: float) -> datetime:
        self.moment += timedelta(**delta)
        return self.moment


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START_OF_DAY)


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        default_employee_id: str = DEFAULT_EMPLOYEE_ID,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, default_employee_id=default_employee_id, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_employee_id: str = DEFAULT_EMPLOYEE_ID,
        timezone: str = "UTC",
        allow_negative_stock: bool = False,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            default_employee_id=default_employee_id,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                business_name=business_name,
                schema_version=schema_version,
                timezone=timezone,
                default_employee_id=default_employee_id,
                allow_negative_stock=str(allow_negative_stock).lower(),
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_employee_id=default_employee_id,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path, clock: FrozenClock) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file, clock=clock)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# In-memory fixtures for the store and business logic
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        business_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_employee_id=DEFAULT_EMPLOYEE_ID,
    )


@pytest.fixture
def workbook():
    """Return an unsaved master workbook with every sheet and the default employee."""

    return build_master_workbook(default_employee_id=DEFAULT_EMPLOYEE_ID)


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook, clock: FrozenClock) -> core_logic.RuntimeContext:
    """Assemble a runtime context around the in-memory workbook."""

    return core_logic.build_runtime_context(settings, workbook, clock=clock)


@pytest.fixture
def catalog(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Seed the in-memory context with two products and two customers.

    * ``P-COLA``: price 2.50, cost 1.00, stock 10
    * ``P-CHIPS``: price 1.20, cost 0.50, stock 5
    * ``C-ANNA``: credit customer, balance 0
    * ``C-ACME``: invoice customer, balance 0
    """

    core_logic.add_product(
        context,
        product_id="P-COLA",
        product_name="Cola",
        sale_price=Decimal("2.50"),
        unit_cost=Decimal("1.00"),
        stock=10,
        employee_id=DEFAULT_EMPLOYEE_ID,
    )
    core_logic.add_product(
        context,
        product_id="P-CHIPS",
        product_name="Chips",
        sale_price=Decimal("1.20"),
        unit_cost=Decimal("0.50"),
        stock=5,
        employee_id=DEFAULT_EMPLOYEE_ID,
    )
    core_logic.add_customer(
        context,
        customer_id="C-ANNA",
        customer_name="Anna",
        customer_type=constants.CustomerType.CREDIT,
    )
    core_logic.add_customer(
        context,
        customer_id="C-ACME",
        customer_name="Acme Ltd",
        customer_type=constants.CustomerType.INVOICE,
    )
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="shop-cli", description="Shop CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


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
