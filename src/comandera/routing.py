"""
Category routing: which production area prints each line item.

Two heuristics live here and nowhere else:

- ``destination_for`` maps a product category name to a destination
- ``printer_destination`` / ``printer_matches`` map a printer name to the
  destination it serves

Both are lower-cased substring tests over ordered keyword tables, so they
can be swapped for explicit tags later without touching the callers.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import PrinterConfigError, message
from .models import Category, Destination, Printer
from .utils.logger import logger


# Checked in order; the first destination with a matching keyword wins.
CATEGORY_KEYWORDS: Tuple[Tuple[Destination, Tuple[str, ...]], ...] = (
    (Destination.BAR, (
        "bebida", "drink", "beverage", "cerveza", "beer", "vino", "wine",
        "cocktail", "coctel", "cóctel", "licor", "liquor", "refresco", "soda",
    )),
    (Destination.SUSHI_BAR, (
        "sushi", "roll", "sashimi", "tempura", "wasabi", "soja", "soy",
    )),
    (Destination.GRILL, (
        "parrilla", "grill", "asado", "roast", "carne", "meat", "steak",
        "brocheta", "skewer",
    )),
)

# Ordered for printer_destination: sushi and grill before bar so
# "Barra Sushi" is filed under sushi. Matching against one destination
# (printer_matches) checks only that destination's keywords.
PRINTER_KEYWORDS: Tuple[Tuple[Destination, Tuple[str, ...]], ...] = (
    (Destination.SUSHI_BAR, ("sushi", "counter", "mostrador")),
    (Destination.GRILL, ("parrilla", "grill", "asador", "barbacoa", "bbq", "roast", "plancha", "searer")),
    (Destination.BAR, ("bar", "bebida", "beverage", "drink")),
    (Destination.KITCHEN, ("cocina", "kitchen", "caliente", "hot", "produccion", "producción")),
)

_PRINTER_KEYWORDS_BY_DESTINATION = dict(PRINTER_KEYWORDS)


def destination_for(category_name: Optional[str]) -> Destination:
    """
    Suggest the production area for a category name.

    Empty, missing or unmatched names go to the kitchen.
    """
    name = (category_name or "").lower()
    for destination, keywords in CATEGORY_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return destination
    return Destination.KITCHEN


def printer_destination(printer_name: Optional[str]) -> Optional[Destination]:
    """Destination a printer serves according to its name, or None for general printers."""
    name = (printer_name or "").lower()
    for destination, keywords in PRINTER_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return destination
    return None


def printer_matches(printer_name: Optional[str], destination: Destination) -> bool:
    """
    True when the printer name contains any keyword of ``destination``.

    A printer may serve several areas: "Cocina y Bar" matches both kitchen and bar.
    """
    name = (printer_name or "").lower()
    return any(keyword in name for keyword in _PRINTER_KEYWORDS_BY_DESTINATION.get(destination, ()))


def find_printer(printers: Iterable[Printer], destination: Destination) -> Optional[Printer]:
    """First printer whose name matches the destination keywords."""
    for printer in printers:
        if printer_matches(printer.name, destination):
            return printer
    return None


def general_printer(printers: Sequence[Printer]) -> Optional[Printer]:
    """First printer not dedicated to a production area, else the first printer."""
    for printer in printers:
        if printer_destination(printer.name) is None:
            return printer
    return printers[0] if printers else None


@dataclass
class AutoConfigureResult:
    updated_count: int = 0
    updates: List[Tuple[str, str]] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"updatedCount": self.updated_count, "unresolved": list(self.unresolved)}


def printer_for_destination(printers: Sequence[Printer], destination: Destination) -> Optional[Printer]:
    """
    Printer auto-configuration assigns to a destination.

    Kitchen falls back to the first general-purpose printer (one whose name
    names no other area). A branch made only of bar/sushi/grill printers
    leaves kitchen categories unassigned instead of misrouting them.
    """
    printer = find_printer(printers, destination)
    if printer is not None or destination != Destination.KITCHEN:
        return printer
    for candidate in printers:
        if printer_destination(candidate.name) is None:
            return candidate
    return None


def auto_configure(categories: Sequence[Category], printers: Sequence[Printer]) -> AutoConfigureResult:
    """
    Plan category -> printer assignments from names alone.

    Only categories whose suggested printer differs from the current one
    are scheduled, so a second run over the applied plan yields nothing.
    """
    if not printers:
        return AutoConfigureResult(error=message("no_printers"))

    result = AutoConfigureResult()
    for category in categories:
        destination = destination_for(category.name)
        printer = printer_for_destination(printers, destination)
        if printer is None:
            result.unresolved.append(category.name)
            logger.warning("⚠️ No printer for category",
                           category=category.name,
                           destination=destination.value)
            continue
        if printer.id != category.printer_id:
            result.updates.append((category.id, printer.id))

    result.updated_count = len(result.updates)
    return result


async def apply_auto_configuration(store, branch_id: Optional[str]) -> AutoConfigureResult:
    """
    Load categories and branch printers from the store, plan and write the updates.

    Fails fast (``error`` set, nothing written) when the branch has no printers.
    """
    if not branch_id:
        return AutoConfigureResult(error=message("no_printers"))

    printers = []
    for row in await store.list_printers(branch_id):
        try:
            printers.append(Printer.from_row(row))
        except PrinterConfigError as e:
            logger.warning(f"⚠️ Skipping invalid printer: {e}", printer_id=row.get("id"))
    categories = [Category.from_row(row) for row in await store.list_categories()]

    result = auto_configure(categories, printers)
    if result.error:
        logger.warning(f"⚠️ Auto-configuration aborted: {result.error}", branch=branch_id)
        return result

    for category_id, printer_id in result.updates:
        await store.update_category_printer(category_id, printer_id)

    logger.info("🪄 Auto-configuration complete",
                branch=branch_id,
                updated=result.updated_count,
                unresolved=len(result.unresolved))
    return result
