"""
ESC/POS command formatting for comandas, customer tickets and test pages.

Everything here is a pure data-to-bytes transform: no clock, network or
store access. Timestamps come from the documents themselves so identical
input always renders identical bytes.
"""

from datetime import datetime
from typing import Optional

from ..config import config
from ..models import Comanda, Ticket, TicketSettings


class EscPos:
    """ESC/POS command bytes understood by the kitchen and cashier printers."""
    ESC = 0x1B
    GS = 0x1D
    LF = b"\x0a"

    INIT = b"\x1b\x40"
    ALIGN_LEFT = b"\x1b\x61\x00"
    ALIGN_CENTER = b"\x1b\x61\x01"
    ALIGN_RIGHT = b"\x1b\x61\x02"
    BOLD_ON = b"\x1b\x45\x01"
    BOLD_OFF = b"\x1b\x45\x00"
    UNDERLINE_ON = b"\x1b\x2d\x01"
    UNDERLINE_OFF = b"\x1b\x2d\x00"
    DOUBLE_HEIGHT_ON = b"\x1b\x21\x10"
    DOUBLE_WIDTH_ON = b"\x1b\x21\x20"
    NORMAL_SIZE = b"\x1b\x21\x00"
    CUT = b"\x1d\x56\x41"  # partial cut

    ALIGN = {
        "left": ALIGN_LEFT,
        "center": ALIGN_CENTER,
        "right": ALIGN_RIGHT,
    }


NOTE_MARKER = "NOTA:"
THANK_YOU = "¡GRACIAS POR SU PREFERENCIA!"


class TicketFormatter:
    """
    Renders print documents as raw ESC/POS byte streams.

    Args:
        width: Characters per line (32 for 58mm paper, 48 for 80mm)
        encoding: Codec matching the printer's active code page
        currency: Symbol prefixed to every amount
        enlarge_items: Print comanda item lines bold and double height
        feed_lines: Blank lines fed before the cut
    """

    def __init__(self, width: int = 32, encoding: str = "cp437", currency: str = "$",
                 enlarge_items: bool = True, feed_lines: int = 3):
        self.width = width
        self.encoding = encoding
        self.currency = currency
        self.enlarge_items = enlarge_items
        self.feed_lines = feed_lines

    @classmethod
    def from_config(cls) -> "TicketFormatter":
        return cls(
            width=config.LINE_WIDTH,
            encoding=config.TEXT_ENCODING,
            currency=config.CURRENCY_SYMBOL,
        )

    def encode(self, text: str) -> bytes:
        """Encode text for the printer code page, replacing unmappable glyphs."""
        return text.encode(self.encoding, errors="replace")

    def line(self, text: str = "") -> bytes:
        return self.encode(text) + EscPos.LF

    def money(self, amount: float) -> str:
        return f"{self.currency}{amount:.2f}"

    def divider(self) -> bytes:
        return self.line("-" * self.width)

    def feed_and_cut(self) -> bytes:
        return EscPos.LF * self.feed_lines + EscPos.CUT

    def format_text(self, text: str, align: str = "left", bold: bool = False,
                    underline: bool = False) -> bytes:
        """
        Format a single line with independent style toggles.

        Alignment is always emitted so a previous line's alignment never
        carries over, and a centered or right line resets to left after
        its line feed. Every "on" command is closed after the text, in
        reverse order.

        Raises:
            ValueError: for an unknown alignment
        """
        if align not in EscPos.ALIGN:
            raise ValueError(f"Unknown alignment: {align}")

        out = bytearray(EscPos.ALIGN[align])
        if bold:
            out += EscPos.BOLD_ON
        if underline:
            out += EscPos.UNDERLINE_ON
        out += self.encode(text)
        if underline:
            out += EscPos.UNDERLINE_OFF
        if bold:
            out += EscPos.BOLD_OFF
        out += EscPos.LF
        if align != "left":
            out += EscPos.ALIGN_LEFT
        return bytes(out)

    def format_comanda(self, comanda: Comanda) -> bytes:
        """Render a kitchen/bar comanda."""
        out = bytearray(EscPos.INIT)

        # Header
        out += EscPos.ALIGN_CENTER
        out += EscPos.BOLD_ON + EscPos.DOUBLE_HEIGHT_ON
        out += self.line("*** COMANDA ***")
        out += self.line(f"AREA: {comanda.area_name.upper()}")
        out += EscPos.NORMAL_SIZE + EscPos.BOLD_OFF
        if comanda.is_urgent:
            out += EscPos.BOLD_ON + self.line("*** URGENTE ***") + EscPos.BOLD_OFF

        # Metadata
        out += EscPos.LF + EscPos.ALIGN_LEFT
        out += EscPos.BOLD_ON + self.line(f"MESA: {comanda.table_name}") + EscPos.BOLD_OFF
        out += self.line(f"HORA: {comanda.created_at.strftime('%H:%M:%S')}")
        out += self.line(f"ORDEN: #{str(comanda.order_id)[-6:]}")
        if comanda.server_name:
            out += self.line(f"MESERO: {comanda.server_name}")
        if comanda.customer_name:
            out += self.line(f"CLIENTE: {comanda.customer_name}")
        out += self.divider()

        # Items
        for item in comanda.items:
            if self.enlarge_items:
                out += EscPos.BOLD_ON + EscPos.DOUBLE_HEIGHT_ON
                out += self.line(f"{item.quantity}x {item.name}")
                out += EscPos.NORMAL_SIZE + EscPos.BOLD_OFF
            else:
                out += self.line(f"{item.quantity}x {item.name}")
            if item.notes:
                out += self.line(f"   {NOTE_MARKER} {item.notes}")
            out += EscPos.LF

        out += self.divider()
        out += self.line(f"TOTAL ITEMS: {comanda.total_items}")

        if comanda.notes:
            out += EscPos.BOLD_ON + self.line("NOTAS ESPECIALES:") + EscPos.BOLD_OFF
            out += self.line(comanda.notes)
            out += self.divider()

        out += self.feed_and_cut()
        return bytes(out)

    def _ticket_item(self, quantity: int, name: str, amount: float) -> str:
        name_width = self.width - 13
        return f"{quantity:>3} {name[:name_width]:<{name_width}} {amount:>8.2f}"

    def format_ticket(self, ticket: Ticket, settings: Optional[TicketSettings] = None) -> bytes:
        """Render the customer receipt with right-aligned totals."""
        settings = settings or TicketSettings()
        out = bytearray(EscPos.INIT)

        # Header
        out += EscPos.ALIGN_CENTER
        out += EscPos.BOLD_ON + EscPos.DOUBLE_HEIGHT_ON
        out += self.line((settings.business_name or "RESTAURANTE").upper())
        out += EscPos.NORMAL_SIZE + EscPos.BOLD_OFF
        if settings.ticket_header:
            out += self.line(settings.ticket_header)

        # Metadata
        out += EscPos.LF + EscPos.ALIGN_LEFT
        out += self.line(f"MESA: {ticket.table_name or 'N/A'}")
        out += self.line(f"FECHA: {ticket.printed_at.strftime('%d/%m/%Y %H:%M:%S')}")
        out += self.line(f"FOLIO: #{str(ticket.order_id)[-6:] or '000000'}")
        out += self.line(f"MESERO: {ticket.server_name or 'N/A'}")
        out += self.divider()

        # Items
        for item in ticket.items:
            out += self.line(self._ticket_item(item.quantity, item.name, item.line_total))
            if item.notes:
                out += self.line(f"   * {item.notes}")
        out += self.divider()

        # Totals
        out += EscPos.ALIGN_RIGHT
        out += self.line(f"SUBTOTAL: {self.money(ticket.subtotal)}")
        out += self.line(f"{ticket.tax_name or 'IVA'}: {self.money(ticket.tax)}")
        out += EscPos.BOLD_ON + self.line(f"TOTAL: {self.money(ticket.total)}") + EscPos.BOLD_OFF

        if ticket.payment_method:
            out += self.line(f"PAGO: {ticket.payment_method.upper()}")
            if ticket.cash_received is not None:
                out += self.line(f"RECIBIDO: {self.money(ticket.cash_received)}")
                out += self.line(f"CAMBIO: {self.money(ticket.change)}")

        # Footer
        out += EscPos.LF + EscPos.ALIGN_CENTER
        if settings.ticket_footer:
            out += self.line(settings.ticket_footer)
        out += self.line(THANK_YOU)
        out += self.feed_and_cut()
        return bytes(out)

    def format_self_test(self, printer_name: str, printed_at: datetime) -> bytes:
        """Minimal connectivity check page for one printer."""
        out = bytearray(EscPos.INIT)
        out += EscPos.ALIGN_CENTER + EscPos.BOLD_ON
        out += self.line("TEST DE IMPRESION")
        out += self.line(printer_name)
        out += EscPos.NORMAL_SIZE + EscPos.BOLD_OFF
        out += self.line(printed_at.strftime("%d/%m/%Y %H:%M:%S"))
        out += self.feed_and_cut()
        return bytes(out)

    def format_bridge_test(self, bridge_name: str, printed_at: datetime) -> bytes:
        """Human readable page printed by the bridge for ``type: test`` requests."""
        out = bytearray(EscPos.INIT)
        out += self.format_text("TEST DE IMPRESION", align="center", bold=True, underline=True)
        out += self.format_text("BRIDGE FUNCIONANDO CORRECTAMENTE", align="center")
        out += self.format_text(bridge_name, align="center")
        out += self.format_text(printed_at.strftime("%d/%m/%Y %H:%M:%S"), align="center")
        out += self.feed_and_cut()
        return bytes(out)


# Default formatter built from configuration
formatter = TicketFormatter.from_config()


def format_text(text: str, align: str = "left", bold: bool = False, underline: bool = False) -> bytes:
    return formatter.format_text(text, align=align, bold=bold, underline=underline)


def divider() -> bytes:
    return formatter.divider()


def format_comanda(comanda: Comanda) -> bytes:
    return formatter.format_comanda(comanda)


def format_ticket(ticket: Ticket, settings: Optional[TicketSettings] = None) -> bytes:
    return formatter.format_ticket(ticket, settings)
