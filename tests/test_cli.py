"""Unit and end-to-end tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import pytest

from retail_ledger import cli, core_logic, data_manager
from retail_ledger.constants import SaleStatus


WRITE_COMMANDS = {
    "add-product",
    "add-customer",
    "add-employee",
    "add-partner",
    "sale",
    "set-status",
    "duplicate",
    "return",
    "wholesale",
    "pay-wholesale",
    "stocktake",
    "attendance",
    "payroll",
    "expense",
    "open-shift",
    "close-shift",
    "save-draft",
    "discard-draft",
    "checkout-draft",
}

READ_COMMANDS = {
    "stock",
    "log",
    "drafts",
    "reconcile",
}


def _registered_choices(parser: argparse.ArgumentParser) -> Iterable[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices.keys()
    return ()


def _run(config_path: Path, *argv: str) -> int:
    return cli.main(["--config", str(config_path), *argv])


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "ledger-cli"


def test_configure_subcommands_registers_every_command():
    """configure_subcommands should wire write and read sub-commands."""

    parser = cli.build_parser()
    command_table = cli.configure_subcommands(parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert set(_registered_choices(parser)) == WRITE_COMMANDS | READ_COMMANDS


def test_build_command_table_rejects_duplicates():
    """Two specs with the same name indicate a wiring bug."""

    spec = cli.CommandSpec("alpha", "help", lambda sub: sub.add_parser("alpha"), lambda *_: 0)
    with pytest.raises(ValueError):
        cli.build_command_table([spec, spec])


def test_dispatch_unknown_command_raises():
    """dispatch_command should refuse commands missing from the table."""

    with pytest.raises(KeyError):
        cli.dispatch_command(None, argparse.Namespace(command="ghost"), {})


def test_item_arg_parses_optional_price():
    """Line items accept PRODUCT:QTY with an optional price."""

    assert cli.item_arg("P1:2") == ("P1", 2, None)
    assert cli.item_arg("P1:2:9.5") == ("P1", 2, Decimal("9.5"))
    with pytest.raises(argparse.ArgumentTypeError):
        cli.item_arg("P1")
    with pytest.raises(argparse.ArgumentTypeError):
        cli.item_arg("P1:two")


def test_sale_requires_at_least_one_item():
    """argparse should reject a sale without --item."""

    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    with pytest.raises(SystemExit):
        parser.parse_args(["sale", "--sale-id", "S1"])


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.OutOfStockError("none left"), 2),
        (core_logic.ValidationError("bad"), 2),
        (FileNotFoundError("missing"), 3),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, expected):
    """Business rule violations, missing files, and other errors map to 2, 3, 1."""

    assert cli.handle_cli_error(error) == expected


def test_main_missing_config_returns_three(tmp_path):
    """A missing config file should exit with code 3."""

    assert _run(tmp_path / "absent.ini", "stock") == 3


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


@pytest.fixture
def stocked_config(config_file: Path) -> Path:
    """A config bundle whose workbook already holds a product and a customer."""

    assert _run(
        config_file,
        "add-product", "--product-id", "P1", "--name", "Kettle", "--category", "Kitchen",
        "--price", "100", "--cost-price", "60", "--stock", "10",
    ) == 0
    assert _run(config_file, "add-customer", "--customer-id", "C1", "--name", "Mona", "--phone", "0100") == 0
    return config_file


def _load(config_path: Path):
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return data_manager.load_ledger(settings.data_file)


def test_sale_is_persisted(stocked_config, capsys):
    """A sale command should update stock and customer data on disk."""

    assert _run(stocked_config, "sale", "--sale-id", "S1", "--item", "P1:2", "--customer-id", "C1") == 0
    assert "total 200" in capsys.readouterr().out

    ledger = _load(stocked_config)
    assert core_logic.get_product(ledger, "P1").stock == 8
    assert core_logic.get_customer(ledger, "C1").total_points == 200
    assert ledger.sales[0].total == Decimal("200")


def test_business_rule_violation_leaves_workbook_untouched(stocked_config):
    """An out-of-stock sale should exit with 2 and write nothing."""

    before = _load(stocked_config)
    assert _run(stocked_config, "sale", "--sale-id", "S1", "--item", "P1:11") == 2
    assert _load(stocked_config) == before


def test_cancel_and_return_flow(stocked_config, capsys):
    """Status changes and returns persist their effects."""

    _run(stocked_config, "sale", "--sale-id", "S1", "--item", "P1:2", "--discount", "20")
    assert _run(stocked_config, "return", "--return-id", "R1", "--sale-id", "S1", "--item", "P1:1") == 0
    assert "Refund due: 90.00" in capsys.readouterr().out
    assert _run(stocked_config, "set-status", "--sale-id", "S1", "--status", "cancelled") == 0

    ledger = _load(stocked_config)
    assert ledger.sales[0].status == SaleStatus.CANCELLED
    assert core_logic.get_product(ledger, "P1").stock == 10


def test_read_commands_print_reports(stocked_config, capsys):
    """stock, log, and reconcile print without changing the workbook."""

    capsys.readouterr()
    assert _run(stocked_config, "stock") == 0
    assert "Kettle" in capsys.readouterr().out
    assert _run(stocked_config, "log", "--limit", "1") == 0
    assert "CUSTOMER_ADDED" in capsys.readouterr().out
    assert _run(stocked_config, "reconcile") == 0
    assert "consistent" in capsys.readouterr().out


def test_expense_command_books_a_general_expense(stocked_config):
    """expense should append the expense and audit it under the expense category."""

    assert _run(stocked_config, "expense", "--expense-id", "X1", "--description", "Rent", "--amount", "2500") == 0

    ledger = _load(stocked_config)
    assert [(e.id, e.amount) for e in ledger.expenses] == [("X1", Decimal("2500"))]
    assert ledger.audit_log[0].action == "EXPENSE_RECORDED"


def test_expense_command_generates_an_id(stocked_config):
    """Without --expense-id a timestamp-based EXP id is assigned."""

    assert _run(stocked_config, "expense", "--description", "Water", "--amount", "12.5") == 0
    assert _load(stocked_config).expenses[0].id.startswith("EXP")


def test_expense_command_rejects_zero_amount(stocked_config):
    """A zero expense is a business rule violation and writes nothing."""

    before = _load(stocked_config)
    assert _run(stocked_config, "expense", "--description", "Nothing", "--amount", "0") == 2
    assert _load(stocked_config) == before


def test_shift_commands_stamp_sales(stocked_config, capsys):
    """open-shift and close-shift drive the drawer; sales in between carry the shift."""

    assert _run(stocked_config, "open-shift", "--opened-by", "E1", "--start-cash", "300", "--shift-id", "SH1") == 0
    assert "Shift SH1 opened" in capsys.readouterr().out
    assert _run(stocked_config, "open-shift", "--opened-by", "E1", "--start-cash", "0") == 2
    assert _run(stocked_config, "sale", "--sale-id", "S1", "--item", "P1:1") == 0
    assert _run(stocked_config, "close-shift", "--end-cash", "400", "--notes", "ok") == 0
    assert _run(stocked_config, "close-shift", "--end-cash", "400") == 2

    ledger = _load(stocked_config)
    shift = ledger.shifts[0]
    assert ledger.sales[0].shift_id == "SH1"
    assert (shift.end_cash, shift.notes) == (Decimal("400"), "ok")


def test_draft_commands_hold_and_check_out(stocked_config, capsys):
    """A held draft lists, checks out into a sale, and is then gone."""

    assert _run(stocked_config, "save-draft", "--draft-id", "D1", "--item", "P1:2", "--customer-id", "C1") == 0
    assert core_logic.get_product(_load(stocked_config), "P1").stock == 10
    capsys.readouterr()
    assert _run(stocked_config, "drafts") == 0
    assert "D1" in capsys.readouterr().out

    assert _run(stocked_config, "checkout-draft", "--draft-id", "D1", "--sale-id", "S1") == 0
    ledger = _load(stocked_config)
    assert ledger.drafts == ()
    assert ledger.sales[0].id == "S1"
    assert core_logic.get_product(ledger, "P1").stock == 8


def test_discard_draft_command(stocked_config):
    """discard-draft drops the draft; an unknown id exits with 2."""

    _run(stocked_config, "save-draft", "--draft-id", "D1", "--item", "P1:1")
    assert _run(stocked_config, "discard-draft", "--draft-id", "D1") == 0
    assert _load(stocked_config).drafts == ()
    assert _run(stocked_config, "discard-draft", "--draft-id", "D1") == 2
