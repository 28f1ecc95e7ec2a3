"""
Printer registry: branch-scoped printer CRUD plus in-memory lookup.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .errors import PrinterConfigError
from .models import Destination, Printer
from .routing import find_printer, general_printer
from .utils.logger import logger


class PrinterRegistry:
    """
    Printers configured for one branch.

    The registry keeps the result of the last ``list`` call as an immutable
    tuple. Lookups scan that snapshot; callers refresh it before a burst of
    prints instead of patching entries in place.
    """

    def __init__(self, store, branch_id: Optional[str] = None):
        self.store = store
        self.branch_id = branch_id
        self._printers: Tuple[Printer, ...] = ()

    @property
    def printers(self) -> Tuple[Printer, ...]:
        """Snapshot from the most recent ``list``."""
        return self._printers

    async def list(self, branch_id: Optional[str] = None) -> List[Printer]:
        """
        Fetch the branch printers, sorted by name, and replace the snapshot.

        Without a branch selection the result is empty and the store is not
        queried. Rows that fail validation are logged and skipped.
        """
        branch_id = branch_id or self.branch_id
        if not branch_id:
            self._printers = ()
            return []

        printers = []
        for row in await self.store.list_printers(branch_id):
            try:
                printers.append(Printer.from_row(row))
            except PrinterConfigError as e:
                logger.warning(f"⚠️ Skipping invalid printer: {e}", printer_id=row.get("id"))

        self._printers = tuple(sorted(printers, key=lambda p: p.name.lower()))
        logger.debug("🖨️ Printers loaded", branch=branch_id, count=len(self._printers))
        return list(self._printers)

    async def save(self, printer: Printer) -> Printer:
        """
        Insert a printer without id, update one with id.

        Every write stamps ``updated_at`` and ties the printer to the
        registry's branch.

        Raises:
            PrinterConfigError: if no branch is selected
        """
        branch_id = printer.branch_id or self.branch_id
        if not branch_id:
            raise PrinterConfigError("Select a branch before saving printers")

        row = printer.to_row()
        row["branch_id"] = branch_id
        row["updated_at"] = datetime.now(timezone.utc).isoformat()

        if printer.id:
            saved = await self.store.update_printer(printer.id, row)
            logger.info("💾 Printer updated", printer=printer.name, id=printer.id)
        else:
            row.pop("id", None)
            saved = await self.store.insert_printer(row)
            logger.info("💾 Printer created", printer=printer.name)
        return Printer.from_row(saved)

    async def delete(self, printer_id: str) -> None:
        await self.store.delete_printer(printer_id)
        logger.info("🗑️ Printer deleted", id=printer_id)

    def get(self, printer_id: str) -> Optional[Printer]:
        for printer in self._printers:
            if printer.id == printer_id:
                return printer
        return None

    def find_for_destination(self, destination: Destination) -> Optional[Printer]:
        """Printer whose name matches the destination keywords (``cocina`` -> kitchen)."""
        return find_printer(self._printers, destination)

    def general_printer(self) -> Optional[Printer]:
        """Printer used for customer tickets."""
        return general_printer(self._printers)
