"""
Transports that deliver a raw ESC/POS buffer to one physical printer.

Each connection kind has its own handler:

- ``NetworkTransport``: TCP socket, usually port 9100
- ``UsbTransport``: python-escpos ``Usb`` device, released after every job
- ``BluetoothTransport``: BLE GATT characteristic write through bleak

Handlers raise ``DeviceError`` with an operator-facing message. The
``DeviceTransport`` front door picks the handler for the printer's
connection variant and converts every failure into a ``PrintJobResult``.
``RelayTransport`` has the same ``send`` signature but hands the bytes to
the local bridge process over HTTP.
"""

import asyncio
import base64
from typing import Any, Dict, Optional

import httpx
import usb.core
from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError
from escpos.printer import Usb
from escpos.exceptions import DeviceNotFoundError, USBNotFoundError, Error as ESCPOSError

from .config import config
from .discovery import find_pos_usb_device
from .errors import DeviceError, message
from .models import (
    BluetoothConnection,
    NetworkConnection,
    Printer,
    PrintJobResult,
    UsbConnection,
)
from .utils.logger import logger


class NetworkTransport:
    """Raw TCP delivery (JetDirect style)."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or config.NETWORK_TIMEOUT

    async def send(self, data: bytes, connection: NetworkConnection):
        target = f"{connection.address}:{connection.port}"
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(connection.address, connection.port),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise DeviceError(message("timeout", target))
        except ConnectionRefusedError:
            raise DeviceError(message("connection_refused", target))
        except OSError as e:
            raise DeviceError(message("open_failed", f"{target}: {e}"))

        try:
            writer.write(data)
            await asyncio.wait_for(writer.drain(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise DeviceError(message("timeout", target))
        except OSError as e:
            raise DeviceError(message("write_failed", f"{target}: {e}"))
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"🔍 Socket close error: {str(e)}", target=target)


class UsbTransport:
    """
    USB delivery through python-escpos.

    Vendor/product ids come from the printer, then from configuration, then
    from the first attached printer-class device.
    """

    def __init__(self, timeout: Optional[float] = None, default_ids: Optional[tuple] = None):
        self.timeout = timeout or config.USB_TIMEOUT
        self.default_ids = default_ids if default_ids is not None else config.usb_ids()

    def _resolve_ids(self, connection: UsbConnection) -> tuple:
        if connection.vendor_id is not None and connection.product_id is not None:
            return connection.vendor_id, connection.product_id
        if self.default_ids:
            return self.default_ids
        device = find_pos_usb_device()
        if device is None:
            raise DeviceError(message("usb_not_found"))
        return device.idVendor, device.idProduct

    def _write(self, data: bytes, connection: UsbConnection):
        vendor_id, product_id = self._resolve_ids(connection)
        label = f"{vendor_id:04x}:{product_id:04x}"

        printer = Usb(vendor_id, product_id, timeout=int(self.timeout * 1000))
        try:
            printer.open()
        except (USBNotFoundError, DeviceNotFoundError):
            raise DeviceError(message("usb_not_found", label))
        except (ESCPOSError, usb.core.USBError) as e:
            raise DeviceError(message("open_failed", f"{label}: {e}"))

        try:
            printer._raw(data)
        except (USBNotFoundError, DeviceNotFoundError):
            raise DeviceError(message("usb_not_found", label))
        except ESCPOSError as e:
            raise DeviceError(message("open_failed", f"{label}: {e}"))
        except usb.core.USBError as e:
            raise DeviceError(message("write_failed", f"{label}: {e}"))
        finally:
            printer.close()

    async def send(self, data: bytes, connection: UsbConnection):
        try:
            await asyncio.wait_for(asyncio.to_thread(self._write, data, connection), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise DeviceError(message("timeout", "USB"))


class BluetoothTransport:
    """BLE delivery: find the device by name, write the printer characteristic, disconnect."""

    def __init__(self, scan_timeout: Optional[float] = None, timeout: Optional[float] = None,
                 service_uuid: Optional[str] = None, characteristic_uuid: Optional[str] = None):
        self.scan_timeout = scan_timeout or config.BLE_SCAN_TIMEOUT
        self.timeout = timeout or config.NETWORK_TIMEOUT
        self.service_uuid = service_uuid or config.BLE_SERVICE_UUID
        self.characteristic_uuid = characteristic_uuid or config.BLE_CHARACTERISTIC_UUID

    def _find_characteristic(self, client):
        service = client.services.get_service(self.service_uuid)
        if service is not None:
            characteristic = service.get_characteristic(self.characteristic_uuid)
            if characteristic is not None:
                return characteristic
        # Unknown model: first writable characteristic
        for service in client.services:
            for candidate in service.characteristics:
                if {"write", "write-without-response"} & set(candidate.properties):
                    return candidate
        return None

    async def _write(self, data: bytes, connection: BluetoothConnection):
        device = await BleakScanner.find_device_by_name(connection.device_name, timeout=self.scan_timeout)
        if device is None:
            raise DeviceError(message("bluetooth_not_found", connection.device_name))

        async with BleakClient(device, timeout=self.timeout) as client:
            characteristic = self._find_characteristic(client)
            if characteristic is None:
                raise DeviceError(message("bluetooth_characteristic", connection.device_name))

            with_response = "write" in characteristic.properties
            chunk_size = max(20, client.mtu_size - 3)
            for offset in range(0, len(data), chunk_size):
                await client.write_gatt_char(
                    characteristic, data[offset:offset + chunk_size], response=with_response
                )

    async def send(self, data: bytes, connection: BluetoothConnection):
        try:
            await asyncio.wait_for(self._write(data, connection), timeout=self.scan_timeout + self.timeout)
        except asyncio.TimeoutError:
            raise DeviceError(message("timeout", connection.device_name))
        except BleakError as e:
            raise DeviceError(message("open_failed", f"{connection.device_name}: {e}"))


class DeviceTransport:
    """Uniform ``send`` over every connection variant."""

    def __init__(self, network: Optional[NetworkTransport] = None, usb: Optional[UsbTransport] = None,
                 bluetooth: Optional[BluetoothTransport] = None):
        self.handlers = {
            NetworkConnection: network or NetworkTransport(),
            UsbConnection: usb or UsbTransport(),
            BluetoothConnection: bluetooth or BluetoothTransport(),
        }

    async def send(self, data: bytes, printer: Printer) -> PrintJobResult:
        handler = self.handlers.get(type(printer.connection))
        if handler is None:
            error = message("unsupported_connection", type(printer.connection).__name__)
            logger.print_error(printer.name, error)
            return PrintJobResult(printer=printer.name, printer_id=printer.id, success=False, error=error)

        logger.print_start(printer.name, printer.connection_type.value, len(data))
        try:
            await handler.send(data, printer.connection)
        except DeviceError as e:
            error = str(e)
        except Exception as e:
            error = message("write_failed", str(e))
            logger.exception("❌ Unexpected transport error", printer=printer.name)
        else:
            logger.print_complete(printer.name, printer.connection_type.value)
            return PrintJobResult(printer=printer.name, printer_id=printer.id, success=True)

        logger.print_error(printer.name, error)
        return PrintJobResult(printer=printer.name, printer_id=printer.id, success=False, error=error)


class RelayTransport:
    """
    Delivery through the local printer bridge (``POST /print``).

    Args:
        bridge_url: Base URL of the bridge, e.g. http://localhost:5000
        timeout: Whole-request timeout in seconds
        client: Optional shared ``httpx.AsyncClient``
    """

    def __init__(self, bridge_url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.bridge_url = (bridge_url or config.BRIDGE_URL).rstrip("/")
        self.timeout = timeout or config.RELAY_TIMEOUT
        self.client = client

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = f"{self.bridge_url}{path}"
        if self.client is not None:
            return await self.client.request(method, url, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, json=payload)

    async def _post_print(self, payload: Dict[str, Any], printer: Printer) -> PrintJobResult:
        try:
            response = await self._request("POST", "/print", payload)
        except httpx.TimeoutException:
            error = message("timeout", "bridge")
        except httpx.HTTPError as e:
            logger.debug(f"🔍 Bridge request failed: {str(e)}", url=self.bridge_url)
            error = message("bridge_unreachable")
        else:
            body = _json_body(response)
            if response.is_success and body.get("success", True):
                logger.print_complete(printer.name, printer.connection_type.value)
                return PrintJobResult(printer=printer.name, printer_id=printer.id, success=True)
            error = body.get("error") or message("bridge_error", str(response.status_code))

        logger.print_error(printer.name, error)
        return PrintJobResult(printer=printer.name, printer_id=printer.id, success=False, error=error)

    async def send(self, data: bytes, printer: Printer) -> PrintJobResult:
        """Send raw ESC/POS bytes, base64 encoded, for the bridge to write verbatim."""
        logger.print_start(printer.name, "relay", len(data))
        payload = {
            "type": "raw",
            "data": base64.b64encode(data).decode("ascii"),
            "printer": printer.to_bridge_payload(),
        }
        return await self._post_print(payload, printer)

    async def test(self, printer: Printer) -> PrintJobResult:
        """Ask the bridge to print its own human-readable test page."""
        payload = {"type": "test", "printer": printer.to_bridge_payload()}
        return await self._post_print(payload, printer)

    async def status(self) -> Dict[str, Any]:
        """
        Liveness check against ``GET /status``.

        Returns:
            The bridge payload, or ``{"status": "offline", "error": ...}``
        """
        try:
            response = await self._request("GET", "/status")
        except httpx.HTTPError as e:
            return {"status": "offline", "error": message("bridge_unreachable", str(e))}
        if not response.is_success:
            return {"status": "offline", "error": message("bridge_error", str(response.status_code))}
        return _json_body(response)


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def make_transport(mode: Optional[str] = None):
    """Transport for the configured print mode (``relay`` or ``direct``)."""
    mode = mode or config.PRINT_MODE
    if mode == "direct":
        return DeviceTransport()
    return RelayTransport()
