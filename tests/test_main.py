import asyncio

import pytest

from comandera import main as cli
from comandera.store import MemoryStore

from conftest import BRANCH, printer_row


def test_parser_subcommands():
    parser = cli.build_parser()

    args = parser.parse_args(["--mode", "direct", "print-order", "order-000123"])
    assert (args.command, args.mode, args.order_id) == ("print-order", "direct", "order-000123")

    args = parser.parse_args(["scan", "--range", "10.0.0.1-5", "--range", "10.0.1.7", "--usb"])
    assert args.range == ["10.0.0.1-5", "10.0.1.7"]
    assert args.usb and not args.bluetooth

    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_auto_configure_command(monkeypatch, capsys):
    store = MemoryStore(
        printers=[printer_row("p-bar", "Bar Principal")],
        categories=[{"id": "c1", "name": "Bebidas", "printer_id": None}],
    )
    monkeypatch.setattr(cli, "build_store", lambda: store)
    monkeypatch.setattr(cli.config, "BRANCH_ID", BRANCH)

    ok = asyncio.run(cli.cmd_auto_configure(cli.build_parser().parse_args(["auto-configure"])))

    assert ok is True
    assert store.categories[0]["printer_id"] == "p-bar"
    assert '"updatedCount": 1' in capsys.readouterr().out


def test_print_order_command(monkeypatch, store, transport):
    monkeypatch.setattr(cli, "build_store", lambda: store)
    monkeypatch.setattr(cli, "make_transport", lambda mode: transport)
    monkeypatch.setattr(cli.config, "BRANCH_ID", BRANCH)

    ok = asyncio.run(cli.cmd_print_order(cli.build_parser().parse_args(["print-order", "order-000123"])))

    assert ok is True
    assert len(transport.sent) == 2


def test_main_exits_non_zero_on_failure(monkeypatch, store, transport):
    store.printers = []
    monkeypatch.setattr(cli, "build_store", lambda: store)
    monkeypatch.setattr(cli, "make_transport", lambda mode: transport)
    monkeypatch.setattr(cli.config, "BRANCH_ID", BRANCH)

    with pytest.raises(SystemExit) as exc:
        cli.main(["ticket", "order-000123"])

    assert exc.value.code == 1
