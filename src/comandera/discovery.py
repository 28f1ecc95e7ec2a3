"""
Best-effort printer discovery over the LAN, USB and Bluetooth.

Every candidate gets its own outcome; one unreachable address or a
missing USB backend never aborts the rest of the scan.
"""

import asyncio
import ipaddress
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

import usb.core
import usb.util
from bleak import BleakScanner
from bleak.exc import BleakError

from .config import config
from .utils.logger import logger


USB_PRINTER_CLASS = 7
NAME_HINTS = ("printer", "pos", "thermal", "receipt")
BLUETOOTH_PREFIXES = ("printer", "pos")

_RANGE_RE = re.compile(r"^(\d+\.\d+\.\d+)\.(\d+)-(\d+)$")


@dataclass(frozen=True)
class ScanOutcome:
    """Result of a connection attempt to one candidate address."""
    address: str
    port: int
    reachable: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class DiscoveredPrinter:
    name: str
    connection_type: str
    address: Optional[str] = None
    port: Optional[int] = None
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    device_id: Optional[str] = None

    def to_row(self) -> dict:
        """Printer row ready to be saved through the registry."""
        row = {"name": self.name, "connection_type": self.connection_type}
        if self.address:
            row["ip_address"] = self.address
            row["port"] = self.port
        if self.vendor_id is not None:
            row["vendor_id"] = f"0x{self.vendor_id:04x}"
            row["product_id"] = f"0x{self.product_id:04x}"
        if self.device_id:
            row["device_name"] = self.name
        return row


def parse_range(value: str) -> List[str]:
    """
    Expand ``192.168.1.100-150`` into individual addresses.

    A plain address expands to itself.

    Raises:
        ValueError: for malformed ranges
    """
    value = value.strip()
    match = _RANGE_RE.match(value)
    if not match:
        return [str(ipaddress.IPv4Address(value))]

    base, start, end = match.group(1), int(match.group(2)), int(match.group(3))
    if not (0 <= start <= end <= 255):
        raise ValueError(f"Invalid address range: {value}")
    return [str(ipaddress.IPv4Address(f"{base}.{i}")) for i in range(start, end + 1)]


async def check_address(address: str, port: int, timeout: float) -> ScanOutcome:
    """Try a TCP connection to one candidate."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(address, port), timeout=timeout)
    except asyncio.TimeoutError:
        return ScanOutcome(address, port, False, "timeout")
    except OSError as e:
        return ScanOutcome(address, port, False, e.strerror or str(e))

    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"🔍 Scan close error: {str(e)}", address=address)
    return ScanOutcome(address, port, True)


async def scan_network(ranges: Optional[Sequence[str]] = None, port: Optional[int] = None,
                       timeout: Optional[float] = None, concurrency: Optional[int] = None) -> List[ScanOutcome]:
    """
    Try every address in ``ranges`` on the raw printing port.

    Returns:
        One ``ScanOutcome`` per candidate, in address order
    """
    ranges = ranges if ranges is not None else config.SCAN_RANGES
    port = port or config.DEFAULT_PRINTER_PORT
    timeout = timeout or config.SCAN_TIMEOUT
    semaphore = asyncio.Semaphore(concurrency or config.SCAN_CONCURRENCY)

    addresses = []
    for value in ranges:
        try:
            addresses.extend(parse_range(value))
        except ValueError as e:
            logger.warning(f"⚠️ Skipping scan range: {e}", range=value)

    async def bounded(address: str) -> ScanOutcome:
        async with semaphore:
            return await check_address(address, port, timeout)

    outcomes = await asyncio.gather(*(bounded(address) for address in addresses))
    logger.scan_result(len(outcomes), sum(1 for o in outcomes if o.reachable))
    return list(outcomes)


def network_printers(outcomes: Sequence[ScanOutcome]) -> List[DiscoveredPrinter]:
    return [
        DiscoveredPrinter(name=f"Network Printer {o.address}", connection_type="network",
                          address=o.address, port=o.port)
        for o in outcomes if o.reachable
    ]


def _is_printer_class(device) -> bool:
    for cfg in device:
        for interface in cfg:
            if interface.bInterfaceClass == USB_PRINTER_CLASS:
                return True
    return False


def _product_name(device) -> str:
    try:
        return usb.util.get_string(device, device.iProduct) or ""
    except (usb.core.USBError, ValueError, NotImplementedError):
        return ""


def _usb_candidates() -> list:
    try:
        return list(usb.core.find(find_all=True))
    except usb.core.NoBackendError as e:
        logger.warning(f"⚠️ USB backend unavailable: {e}")
        return []


def find_pos_usb_device():
    """First attached device exposing the USB printer class, or None."""
    for device in _usb_candidates():
        try:
            if _is_printer_class(device):
                return device
        except usb.core.USBError as e:
            logger.debug(f"🔍 USB descriptor error: {str(e)}")
    return None


def detect_usb_printers() -> List[DiscoveredPrinter]:
    """Attached USB printers: printer-class devices or devices whose name says so."""
    found = []
    for device in _usb_candidates():
        name = _product_name(device)
        try:
            is_printer = _is_printer_class(device) or any(h in name.lower() for h in NAME_HINTS)
        except usb.core.USBError as e:
            logger.debug(f"🔍 USB descriptor error: {str(e)}")
            continue
        if is_printer:
            found.append(DiscoveredPrinter(
                name=name or "USB Printer",
                connection_type="usb",
                vendor_id=device.idVendor,
                product_id=device.idProduct,
            ))
    logger.scan_result(len(found), len(found))
    return found


async def detect_bluetooth_printers(timeout: Optional[float] = None) -> List[DiscoveredPrinter]:
    """Advertising BLE devices named like printers (``Printer...``, ``POS...``)."""
    try:
        devices = await BleakScanner.discover(timeout=timeout or config.BLE_SCAN_TIMEOUT)
    except (BleakError, OSError) as e:
        logger.warning(f"⚠️ Bluetooth scan failed: {e}")
        return []

    found = [
        DiscoveredPrinter(name=device.name, connection_type="bluetooth", device_id=device.address)
        for device in devices
        if device.name and device.name.lower().startswith(BLUETOOTH_PREFIXES)
    ]
    logger.scan_result(len(devices), len(found))
    return found
