"""
Data types shared by the formatter, router, registry, dispatcher and transports.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .config import config
from .errors import PrinterConfigError


class Destination(str, Enum):
    """Production area a line item is routed to."""
    KITCHEN = "kitchen"
    BAR = "bar"
    SUSHI_BAR = "sushi_bar"
    GRILL = "grill"

    @property
    def label(self) -> str:
        """Area name printed on the comanda header."""
        return DESTINATION_LABELS[self]


DESTINATION_LABELS = {
    Destination.KITCHEN: "COCINA",
    Destination.BAR: "BAR",
    Destination.SUSHI_BAR: "BARRA DE SUSHI",
    Destination.GRILL: "PARRILLA",
}


class ConnectionType(str, Enum):
    NETWORK = "network"
    USB = "usb"
    BLUETOOTH = "bluetooth"


@dataclass(frozen=True)
class NetworkConnection:
    address: str
    port: int = 9100
    kind = ConnectionType.NETWORK


@dataclass(frozen=True)
class UsbConnection:
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    kind = ConnectionType.USB


@dataclass(frozen=True)
class BluetoothConnection:
    device_name: str
    kind = ConnectionType.BLUETOOTH


Connection = Union[NetworkConnection, UsbConnection, BluetoothConnection]


def _parse_usb_id(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 16)


_FRACTION_RE = re.compile(r"\.(\d+)")
_SHORT_OFFSET_RE = re.compile(r"(\d{2}:\d{2}(?:\.\d+)?[+-]\d{2})$")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a store timestamp.

    PostgREST trims trailing zeros from the fraction (``10:00:00.1234``)
    and may send ``+00`` offsets; both are normalized before parsing.

    Raises:
        ValueError: if the value is not an ISO-8601 timestamp
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip().replace("Z", "+00:00")
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    text = _SHORT_OFFSET_RE.sub(r"\1:00", text)
    return datetime.fromisoformat(text)


@dataclass(frozen=True)
class Printer:
    """A configured output device belonging to one branch."""
    id: Optional[str]
    name: str
    connection: Connection
    branch_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def connection_type(self) -> ConnectionType:
        return self.connection.kind

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Printer":
        """
        Build a printer from a store row or a bridge request.

        Raises:
            PrinterConfigError: if the connection fields are inconsistent
        """
        name = (row.get("name") or "").strip()
        if not name:
            raise PrinterConfigError("Printer name is required")

        kind = (row.get("connection_type") or "").lower()
        if kind == ConnectionType.NETWORK.value:
            address = (row.get("ip_address") or "").strip()
            if not address:
                raise PrinterConfigError(f"Network printer {name!r} has no IP address")
            port = row.get("port")
            try:
                port = int(port) if port not in (None, "") else config.DEFAULT_PRINTER_PORT
            except (TypeError, ValueError) as e:
                raise PrinterConfigError(f"Network printer {name!r} has an invalid port: {port!r}") from e
            if port <= 0 or port > 65535:
                raise PrinterConfigError(f"Network printer {name!r} has an invalid port: {port}")
            connection = NetworkConnection(address=address, port=port)
        elif kind == ConnectionType.USB.value:
            try:
                connection = UsbConnection(
                    vendor_id=_parse_usb_id(row.get("vendor_id")),
                    product_id=_parse_usb_id(row.get("product_id")),
                )
            except ValueError:
                raise PrinterConfigError(f"USB printer {name!r} has invalid vendor/product ids")
        elif kind == ConnectionType.BLUETOOTH.value:
            connection = BluetoothConnection(device_name=row.get("device_name") or name)
        else:
            raise PrinterConfigError(f"Unsupported connection type for {name!r}: {kind or '-'}")

        try:
            created_at = _parse_timestamp(row.get("created_at"))
            updated_at = _parse_timestamp(row.get("updated_at"))
        except ValueError as e:
            raise PrinterConfigError(f"Printer {name!r} has an invalid timestamp: {e}") from e

        return cls(
            id=row.get("id"),
            name=name,
            connection=connection,
            branch_id=row.get("branch_id"),
            created_at=created_at,
            updated_at=updated_at,
        )

    def to_row(self) -> Dict[str, Any]:
        """Serialize to the shape stored in the ``printers`` table."""
        row = {
            "name": self.name,
            "branch_id": self.branch_id,
            "connection_type": self.connection_type.value,
            "ip_address": None,
            "port": None,
        }
        if self.id is not None:
            row["id"] = self.id
        if isinstance(self.connection, NetworkConnection):
            row["ip_address"] = self.connection.address
            row["port"] = self.connection.port
        elif isinstance(self.connection, UsbConnection):
            row["vendor_id"] = _hex_id(self.connection.vendor_id)
            row["product_id"] = _hex_id(self.connection.product_id)
        elif isinstance(self.connection, BluetoothConnection):
            row["device_name"] = self.connection.device_name
        if self.created_at:
            row["created_at"] = self.created_at.isoformat()
        if self.updated_at:
            row["updated_at"] = self.updated_at.isoformat()
        return row

    def to_bridge_payload(self) -> Dict[str, Any]:
        """Printer description understood by the relay bridge."""
        row = self.to_row()
        for key in ("id", "branch_id", "created_at", "updated_at"):
            row.pop(key, None)
        return {k: v for k, v in row.items() if v is not None}


def _hex_id(value: Optional[int]) -> Optional[str]:
    return f"0x{value:04x}" if value is not None else None


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    printer_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Category":
        return cls(id=row["id"], name=row.get("name") or "", printer_id=row.get("printer_id"))


@dataclass(frozen=True)
class ComandaItem:
    name: str
    quantity: int
    notes: Optional[str] = None
    category: Optional[str] = None
    printer_id: Optional[str] = None


@dataclass(frozen=True)
class Comanda:
    """Kitchen/bar production ticket built from the current order state."""
    id: str
    order_id: str
    table_name: str
    area_name: str
    items: Tuple[ComandaItem, ...]
    created_at: datetime
    priority: str = "normal"
    server_name: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_urgent(self) -> bool:
        return self.priority == "urgent"

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)


@dataclass(frozen=True)
class TicketItem:
    name: str
    quantity: int
    price: float
    notes: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


@dataclass(frozen=True)
class Ticket:
    """Customer receipt for a paid (or to-be-paid) order."""
    order_id: str
    table_name: str
    server_name: str
    items: Tuple[TicketItem, ...]
    subtotal: float
    tax: float
    tax_name: str
    total: float
    printed_at: datetime
    payment_method: Optional[str] = None
    cash_received: Optional[float] = None

    @property
    def change(self) -> Optional[float]:
        if self.cash_received is None:
            return None
        return self.cash_received - self.total


@dataclass(frozen=True)
class TicketSettings:
    business_name: str = "RESTAURANTE"
    ticket_header: str = ""
    ticket_footer: str = ""
    tax_rate: float = 0.16
    tax_name: str = "IVA"

    @classmethod
    def from_config(cls) -> "TicketSettings":
        return cls(
            business_name=config.BUSINESS_NAME,
            ticket_header=config.TICKET_HEADER,
            ticket_footer=config.TICKET_FOOTER,
            tax_rate=config.TAX_RATE,
            tax_name=config.TAX_NAME,
        )

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]]) -> "TicketSettings":
        """Business settings row, falling back to configured defaults per field."""
        defaults = cls.from_config()
        if not row:
            return defaults
        tax_rate = row.get("tax_rate")
        return cls(
            business_name=row.get("name") or defaults.business_name,
            ticket_header=row.get("ticket_header") or defaults.ticket_header,
            ticket_footer=row.get("ticket_footer") or defaults.ticket_footer,
            tax_rate=float(tax_rate) if tax_rate is not None else defaults.tax_rate,
            tax_name=row.get("tax_name") or defaults.tax_name,
        )


@dataclass(frozen=True)
class PrintJobResult:
    """Outcome of one transport attempt."""
    printer: str
    success: bool
    error: Optional[str] = None
    destination: Optional[str] = None
    printer_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "printer": self.printer,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error:
            data["error"] = self.error
        if self.destination:
            data["destination"] = self.destination
        if self.printer_id is not None:
            data["printer_id"] = self.printer_id
        return data
