"""
Print orchestration: order -> comandas per production area -> printers.

The manager owns comanda/ticket construction and job sequencing. It holds
no device connections itself; every job goes through the injected
transport, which reports success or failure without raising.
"""

import asyncio
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import config
from .errors import (
    ComanderaError,
    OrderDataError,
    OrderNotFoundError,
    PrinterConfigError,
    message,
)
from .models import (
    Comanda,
    ComandaItem,
    Destination,
    Printer,
    PrintJobResult,
    Ticket,
    TicketItem,
    TicketSettings,
)
from .registry import PrinterRegistry
from .routing import destination_for, printer_destination
from .utils.formatting import TicketFormatter
from .utils.logger import logger


def _quantity(row: Dict[str, Any], order_id: str) -> int:
    try:
        quantity = int(row.get("quantity"))
    except (TypeError, ValueError):
        raise OrderDataError(message("order_malformed", f"{order_id}: quantity {row.get('quantity')!r}"))
    if quantity <= 0:
        raise OrderDataError(message("order_malformed", f"{order_id}: quantity {quantity}"))
    return quantity


def build_comanda(order: Dict[str, Any], created_at: datetime) -> Comanda:
    """
    Build the comanda for an order row with nested tables/items/products.

    Raises:
        OrderDataError: if an item carries an unusable quantity
    """
    order_id = str(order.get("id") or "")
    if not order_id:
        raise OrderDataError(message("order_malformed", "missing id"))

    items = []
    for row in order.get("order_items") or []:
        product = row.get("products") or {}
        category = product.get("categories") or {}
        items.append(ComandaItem(
            name=product.get("name") or "Producto sin nombre",
            quantity=_quantity(row, order_id),
            notes=row.get("notes") or None,
            category=category.get("name"),
            printer_id=category.get("printer_id"),
        ))

    table = order.get("tables") or {}
    customer = order.get("customer_info") or {}
    return Comanda(
        id=f"CMD_{order_id[-6:]}_{int(created_at.timestamp() * 1000)}",
        order_id=order_id,
        table_name=table.get("name") or "Sin mesa",
        area_name=(table.get("areas") or {}).get("name") or "Sin área",
        items=tuple(items),
        created_at=created_at,
        priority=order.get("priority") or "normal",
        server_name=(order.get("user") or {}).get("full_name"),
        customer_name=customer.get("name") if isinstance(customer, dict) else None,
        notes=order.get("notes") or None,
    )


def build_ticket(order: Dict[str, Any], settings: TicketSettings, printed_at: datetime) -> Ticket:
    """
    Build the customer ticket; subtotal and tax are backed out of the
    tax-inclusive total.

    Raises:
        OrderDataError: if the total or an item price is not numeric
    """
    order_id = str(order.get("id") or "")
    try:
        total = float(order["total_amount"])
        items = tuple(
            TicketItem(
                name=(row.get("products") or {}).get("name") or "Producto sin nombre",
                quantity=_quantity(row, order_id),
                price=float(row.get("price_at_order") or 0),
                notes=row.get("notes") or None,
            )
            for row in order.get("order_items") or []
        )
        cash_received = order.get("cash_received")
        cash_received = float(cash_received) if cash_received is not None else None
    except (KeyError, TypeError, ValueError) as e:
        raise OrderDataError(message("order_malformed", f"{order_id}: {e}"))

    subtotal = total / (1 + settings.tax_rate)
    payment_method = order.get("payment_method")
    return Ticket(
        order_id=order_id,
        table_name=(order.get("tables") or {}).get("name") or "",
        server_name=(order.get("user") or {}).get("full_name") or "",
        items=items,
        subtotal=subtotal,
        tax=total - subtotal,
        tax_name=settings.tax_name,
        total=total,
        printed_at=printed_at,
        payment_method=payment_method,
        cash_received=cash_received if payment_method == "cash" else None,
    )


class PrinterManager:
    """
    Comanda and ticket printing for one branch.

    Args:
        store: External data store (see ``store.PrintStore``)
        registry: Branch printer registry
        transport: ``DeviceTransport`` or ``RelayTransport``
        formatter: ESC/POS formatter
        history_size: Number of job results kept for display
        clock: Time source for comanda and ticket timestamps
    """

    def __init__(self, store, registry: PrinterRegistry, transport,
                 formatter: Optional[TicketFormatter] = None,
                 history_size: Optional[int] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.registry = registry
        self.transport = transport
        self.formatter = formatter or TicketFormatter.from_config()
        self.clock = clock
        self.last_error: Optional[str] = None
        self._history = deque(maxlen=history_size or config.PRINT_HISTORY_SIZE)

    @property
    def printers(self):
        return self.registry.printers

    @property
    def print_history(self) -> List[PrintJobResult]:
        """Most recent job first."""
        return list(self._history)

    async def start(self):
        """Load the branch printers."""
        await self.refresh_printers()

    async def refresh_printers(self):
        return await self.registry.list()

    def active_printers(self) -> Dict[str, List[Printer]]:
        """Printers grouped by the area their name points to; ``general`` for the rest."""
        groups: Dict[str, List[Printer]] = {"general": []}
        for printer in self.registry.printers:
            destination = printer_destination(printer.name)
            key = destination.value if destination else "general"
            groups.setdefault(key, []).append(printer)
        return groups

    def _record(self, result: PrintJobResult, destination: Optional[str] = None) -> PrintJobResult:
        if destination:
            result = replace(result, destination=destination)
        self._history.appendleft(result)
        if not result.success:
            self.last_error = result.error
        return result

    async def generate_comanda(self, order_id: str) -> Comanda:
        """
        Fetch the order and build its comanda.

        Raises:
            OrderNotFoundError: if the store has no such order
            OrderDataError: if the order rows are malformed
        """
        order = await self.store.fetch_order(order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return build_comanda(order, self.clock())

    async def print_comanda(self, comanda: Comanda, printer: Optional[Printer] = None) -> bool:
        """Print a whole comanda on one printer (first configured one by default)."""
        printer = printer or next(iter(self.registry.printers), None)
        if printer is None:
            self.last_error = message("no_printer_for_area", comanda.area_name)
            logger.warning(f"⚠️ {self.last_error}", order_id=comanda.order_id)
            return False

        result = await self.transport.send(self.formatter.format_comanda(comanda), printer)
        self._record(result, destination=comanda.area_name)
        return result.success

    def _partition(self, comanda: Comanda):
        """
        Group items by the printer that will print them.

        A category with an explicit printer uses that printer; its
        destination is the printer's area, else the category heuristic.
        Other items go to the first printer matching their destination,
        or to ``None`` when the branch has none. Each key is a
        ``(destination, printer)`` pair, so two explicit printers behind
        one destination still get their own comanda.
        """
        groups: Dict[Tuple[Destination, Optional[Printer]], List[ComandaItem]] = {}
        for item in comanda.items:
            printer = self.registry.get(item.printer_id) if item.printer_id else None
            if printer is not None:
                destination = printer_destination(printer.name) or destination_for(item.category)
            else:
                destination = destination_for(item.category)
                printer = self.registry.find_for_destination(destination)
            groups.setdefault((destination, printer), []).append(item)
        return groups

    async def _print_area(self, comanda: Comanda, destination: Destination,
                          items: List[ComandaItem], printer: Optional[Printer]) -> bool:
        if printer is None:
            error = message("no_printer_for_area", destination.label)
            logger.warning(f"⚠️ {error}", order_id=comanda.order_id, destination=destination.value)
            self._record(PrintJobResult(printer="-", success=False, error=error), destination.value)
            return False

        area_comanda = replace(comanda, items=tuple(items), area_name=destination.label)
        result = await self.transport.send(self.formatter.format_comanda(area_comanda), printer)
        self._record(result, destination.value)
        return result.success

    async def print_comanda_by_area(self, comanda: Comanda) -> Dict[Destination, bool]:
        """
        Print one comanda per destination and printer that has items.

        Jobs print concurrently; a missing printer or a device failure
        marks only that destination ``False``. A destination split over
        several printers is ``True`` only if every one of its jobs is.
        """
        groups = self._partition(comanda)
        keys = list(groups)
        jobs = [
            self._print_area(comanda, destination, groups[(destination, printer)], printer)
            for destination, printer in keys
        ]
        outcomes = await asyncio.gather(*jobs, return_exceptions=True)

        results: Dict[Destination, bool] = {}
        for (destination, _), outcome in zip(keys, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"❌ Comanda print failed: {outcome}", destination=destination.value)
                self.last_error = message("comanda_failed", str(outcome))
                outcome = False
            results[destination] = results.get(destination, True) and outcome

        logger.info("📋 Comanda dispatched", order_id=comanda.order_id,
                    results={d.value: ok for d, ok in results.items()})
        return results

    async def process_order_comanda(self, order_id: str) -> Dict[Destination, bool]:
        """
        Fetch, split and print the comandas for an order.

        Raises:
            OrderNotFoundError, OrderDataError: the order could not be turned into a comanda
        """
        self.last_error = None
        await self.refresh_printers()
        try:
            comanda = await self.generate_comanda(order_id)
        except ComanderaError as e:
            self.last_error = str(e)
            logger.error(f"❌ Error generating comanda: {e}", order_id=order_id)
            raise
        return await self.print_comanda_by_area(comanda)

    async def print_ticket(self, order_id: str) -> bool:
        """
        Print the customer ticket on the general printer.

        Returns:
            False on any failure, with the reason in ``last_error``
        """
        self.last_error = None
        try:
            await self.refresh_printers()
            order = await self.store.fetch_order(order_id)
            if not order:
                raise OrderNotFoundError(order_id)
            settings = TicketSettings.from_row(await self.store.fetch_business_settings())
            ticket = build_ticket(order, settings, self.clock())
            printer = self.registry.general_printer()
            if printer is None:
                raise PrinterConfigError(message("no_printers"))
        except ComanderaError as e:
            self.last_error = str(e)
            logger.error(f"❌ {message('ticket_failed')}: {e}", order_id=order_id)
            return False
        except Exception as e:
            self.last_error = message("ticket_failed", str(e))
            logger.exception(f"❌ {self.last_error}", order_id=order_id)
            return False

        result = await self.transport.send(self.formatter.format_ticket(ticket, settings), printer)
        self._record(result, destination="ticket")
        return result.success

    async def test_printer(self, printer_id: str) -> bool:
        """Send the self-test page to one configured printer."""
        self.last_error = None
        printer = self.registry.get(printer_id)
        if printer is None:
            self.last_error = message("printer_not_found", str(printer_id))
            logger.warning(f"⚠️ {self.last_error}")
            return False

        data = self.formatter.format_self_test(printer.name, self.clock())
        result = await self.transport.send(data, printer)
        self._record(result, destination="test")
        return result.success
