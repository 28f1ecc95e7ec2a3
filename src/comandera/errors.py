"""
Error types and operator-facing messages for the Comandera print service.

Three families are distinguished:

- configuration errors: no printer for a destination, no printers at all
- device errors: connection refused, timeouts, USB claim or Bluetooth failures
- data errors: order not found, malformed item data

Transports never let a device error escape; they turn it into a failed
``PrintJobResult`` carrying one of the messages below.
"""

MESSAGES = {
    "no_printers": "No hay impresoras configuradas",
    "no_printer_for_area": "No hay impresoras configuradas para esta área",
    "printer_not_found": "Impresora no encontrada",
    "open_failed": "No se pudo abrir la impresora.",
    "write_failed": "Error al enviar datos a la impresora.",
    "timeout": "La impresora no respondió a tiempo.",
    "connection_refused": "La impresora rechazó la conexión.",
    "usb_not_found": "No se encontró ninguna impresora USB conectada.",
    "bluetooth_not_found": "No se encontró la impresora Bluetooth.",
    "bluetooth_characteristic": "La impresora Bluetooth no expone un canal de escritura.",
    "unsupported_connection": "Tipo de conexión no soportado",
    "bridge_unreachable": "Asegúrese de que el bridge de impresión esté ejecutándose en este equipo.",
    "bridge_error": "No se pudo conectar con el bridge de impresión",
    "order_not_found": "Orden no encontrada",
    "order_malformed": "La orden contiene datos inválidos",
    "unknown_command": "Tipo de comando no reconocido.",
    "invalid_payload": "Datos de impresión inválidos.",
    "comanda_failed": "Error al imprimir comanda",
    "ticket_failed": "Error al imprimir ticket",
}


def message(key: str, detail: str = "") -> str:
    """Return the localized message for ``key``, optionally with a detail."""
    text = MESSAGES[key]
    if detail:
        return f"{text} ({detail})"
    return text


class ComanderaError(Exception):
    """Base class for print service errors."""


class PrinterConfigError(ComanderaError):
    """A printer or destination is missing or misconfigured."""


class DeviceError(ComanderaError):
    """A physical printer could not be opened or written to."""


class OrderNotFoundError(ComanderaError):
    """The requested order does not exist in the store."""

    def __init__(self, order_id: str):
        super().__init__(message("order_not_found", str(order_id)))
        self.order_id = order_id


class OrderDataError(ComanderaError):
    """Order rows were fetched but could not be turned into a print document."""


class StoreError(ComanderaError):
    """The external data store rejected or failed a request."""
