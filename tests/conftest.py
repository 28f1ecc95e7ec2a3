import os

# No log file during tests; must be set before comandera.config is imported.
os.environ.setdefault("LOG_FILE", "")

from datetime import datetime

import pytest

from comandera.errors import message
from comandera.models import PrintJobResult
from comandera.printer_manager import PrinterManager
from comandera.registry import PrinterRegistry
from comandera.store import MemoryStore
from comandera.utils.formatting import TicketFormatter


BRANCH = "branch-1"
FIXED_NOW = datetime(2024, 5, 17, 13, 45, 30)


def printer_row(printer_id, name, ip="10.0.0.5", port=9100, branch_id=BRANCH, **extra):
    row = {
        "id": printer_id,
        "name": name,
        "connection_type": "network",
        "ip_address": ip,
        "port": port,
        "branch_id": branch_id,
    }
    row.update(extra)
    return row


def order_item(name, quantity, category, price, notes=None, category_id=None, printer_id=None):
    return {
        "quantity": quantity,
        "notes": notes,
        "price_at_order": price,
        "products": {
            "name": name,
            "categories": {"id": category_id or category.lower(), "name": category, "printer_id": printer_id},
        },
    }


class RecordingTransport:
    """Transport double: records every send and fails for printers named in ``fail``."""

    def __init__(self):
        self.sent = []
        self.fail = set()

    async def send(self, data, printer):
        self.sent.append((printer, data))
        if printer.name in self.fail:
            return PrintJobResult(printer=printer.name, printer_id=printer.id, success=False,
                                  error=message("connection_refused", printer.name))
        return PrintJobResult(printer=printer.name, printer_id=printer.id, success=True)

    def sent_to(self, printer_name):
        return [data for printer, data in self.sent if printer.name == printer_name]


@pytest.fixture
def printer_rows():
    return [
        printer_row("p-kitchen", "Cocina Caliente", ip="10.0.0.5"),
        printer_row("p-bar", "Bar Principal", ip="10.0.0.6"),
    ]


@pytest.fixture
def taco_order():
    return {
        "id": "order-000123",
        "total_amount": 116.0,
        "notes": None,
        "priority": "normal",
        "payment_method": "cash",
        "cash_received": 200,
        "customer_info": None,
        "tables": {"id": "t4", "name": "Mesa 4", "areas": {"name": "Terraza"}},
        "user": {"full_name": "Ana"},
        "order_items": [
            order_item("Taco", 2, "Entradas", 35.0),
            order_item("Cerveza", 1, "Bebidas", 46.0),
        ],
    }


@pytest.fixture
def store(taco_order, printer_rows):
    return MemoryStore(
        orders=[taco_order],
        printers=printer_rows,
        categories=[
            {"id": "entradas", "name": "Entradas", "printer_id": None},
            {"id": "bebidas", "name": "Bebidas", "printer_id": None},
        ],
        settings={"name": "Taqueria Luna", "tax_rate": 0.16, "tax_name": "IVA"},
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def formatter():
    return TicketFormatter(width=32, encoding="cp437", currency="$")


@pytest.fixture
def manager(store, transport, formatter):
    registry = PrinterRegistry(store, branch_id=BRANCH)
    return PrinterManager(store, registry, transport, formatter=formatter, clock=lambda: FIXED_NOW)
