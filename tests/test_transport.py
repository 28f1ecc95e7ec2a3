import asyncio
import base64
import json
import socket

import httpx
import pytest
import usb.core
from bleak.exc import BleakError
from escpos.exceptions import DeviceNotFoundError

from comandera import transport as transport_module
from comandera.errors import DeviceError, message
from comandera.models import BluetoothConnection, NetworkConnection, Printer, UsbConnection
from comandera.transport import (
    BluetoothTransport,
    DeviceTransport,
    NetworkTransport,
    RelayTransport,
    UsbTransport,
    make_transport,
)

from conftest import printer_row


PAYLOAD = b"\x1b\x40Hola cocina\n\x1d\x56\x41"


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _printer(port=9100, name="Cocina"):
    return Printer.from_row(printer_row("p1", name, ip="127.0.0.1", port=port))


class RaisingHandler:
    def __init__(self, error):
        self.error = error
        self.calls = 0

    async def send(self, data, connection):
        self.calls += 1
        raise self.error


def test_network_transport_delivers_bytes():
    async def run():
        received = []
        done = asyncio.Event()

        async def handle(reader, writer):
            received.append(await reader.read())
            writer.close()
            done.set()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            await NetworkTransport(timeout=2).send(PAYLOAD, NetworkConnection("127.0.0.1", port))
            await asyncio.wait_for(done.wait(), timeout=2)
        return received

    assert asyncio.run(run()) == [PAYLOAD]


def test_device_transport_reports_refused_connection():
    transport = DeviceTransport(network=NetworkTransport(timeout=2))

    result = asyncio.run(transport.send(PAYLOAD, _printer(_free_port())))

    assert result.success is False
    assert result.printer == "Cocina"
    assert result.printer_id == "p1"
    assert result.error.startswith(message("connection_refused"))


def test_device_transport_keeps_device_error_message():
    handler = RaisingHandler(DeviceError(message("timeout", "10.0.0.5:9100")))
    transport = DeviceTransport(network=handler)

    result = asyncio.run(transport.send(PAYLOAD, _printer()))

    assert handler.calls == 1
    assert result.success is False
    assert result.error == message("timeout", "10.0.0.5:9100")


def test_device_transport_converts_unexpected_errors():
    transport = DeviceTransport(network=RaisingHandler(RuntimeError("bad state")))

    result = asyncio.run(transport.send(PAYLOAD, _printer()))

    assert result.success is False
    assert result.error == message("write_failed", "bad state")


def test_relay_transport_posts_raw_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "message": "Impresión completada."})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            relay = RelayTransport("http://bridge.local:5000/", client=client)
            return await relay.send(PAYLOAD, _printer())

    result = asyncio.run(run())

    assert result.success is True
    assert seen["url"] == "http://bridge.local:5000/print"
    assert seen["body"]["type"] == "raw"
    assert base64.b64decode(seen["body"]["data"]) == PAYLOAD
    assert seen["body"]["printer"] == {
        "name": "Cocina",
        "connection_type": "network",
        "ip_address": "127.0.0.1",
        "port": 9100,
    }


def test_relay_transport_surfaces_bridge_error():
    def handler(request):
        return httpx.Response(500, json={"success": False, "error": message("connection_refused")})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await RelayTransport("http://bridge.local:5000", client=client).send(PAYLOAD, _printer())

    result = asyncio.run(run())

    assert result.success is False
    assert result.error == message("connection_refused")


def test_relay_transport_bridge_down():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            relay = RelayTransport("http://bridge.local:5000", client=client)
            return await relay.send(PAYLOAD, _printer()), await relay.status()

    result, status = asyncio.run(run())

    assert result.success is False
    assert result.error == message("bridge_unreachable")
    assert status["status"] == "offline"


def test_relay_transport_test_and_status():
    seen = []

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"status": "online", "bridge": "Comandera Printer Bridge v1.0.0"})
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            relay = RelayTransport("http://bridge.local:5000", client=client)
            return await relay.test(_printer()), await relay.status()

    result, status = asyncio.run(run())

    assert result.success is True
    assert seen[0]["type"] == "test"
    assert "data" not in seen[0]
    assert status["status"] == "online"


def test_make_transport_modes():
    assert isinstance(make_transport("direct"), DeviceTransport)
    assert isinstance(make_transport("relay"), RelayTransport)


async def _never_connects(host, port, **kwargs):
    await asyncio.sleep(3600)


def test_device_transport_reports_network_timeout(monkeypatch):
    monkeypatch.setattr(asyncio, "open_connection", _never_connects)
    transport = DeviceTransport(network=NetworkTransport(timeout=0.2))

    result = asyncio.run(transport.send(PAYLOAD, _printer()))

    assert result.success is False
    assert result.error == message("timeout", "127.0.0.1:9100")


class FakeUsb:
    """Stands in for ``escpos.printer.Usb``; fails where told to."""

    instances = []

    def __init__(self, vendor_id, product_id, timeout=0, open_error=None, write_error=None):
        self.ids = (vendor_id, product_id)
        self.timeout = timeout
        self.open_error = open_error
        self.write_error = write_error
        self.written = []
        self.closed = False
        FakeUsb.instances.append(self)

    def open(self):
        if self.open_error:
            raise self.open_error

    def _raw(self, data):
        if self.write_error:
            raise self.write_error
        self.written.append(data)

    def close(self):
        self.closed = True


def _fake_usb(monkeypatch, **errors):
    FakeUsb.instances = []
    monkeypatch.setattr(transport_module, "Usb", lambda vid, pid, timeout=0: FakeUsb(vid, pid, timeout, **errors))


def _usb_send(connection=UsbConnection(0x04B8, 0x0E15)):
    return asyncio.run(UsbTransport(timeout=2, default_ids=()).send(PAYLOAD, connection))


def test_usb_transport_writes_and_releases(monkeypatch):
    _fake_usb(monkeypatch)

    _usb_send()

    device, = FakeUsb.instances
    assert device.ids == (0x04B8, 0x0E15)
    assert device.timeout == 2000
    assert device.written == [PAYLOAD]
    assert device.closed is True


def test_usb_transport_releases_device_after_write_failure(monkeypatch):
    _fake_usb(monkeypatch, write_error=usb.core.USBError("Pipe error"))

    with pytest.raises(DeviceError) as exc:
        _usb_send()

    assert str(exc.value).startswith(message("write_failed"))
    assert FakeUsb.instances[0].closed is True


def test_usb_transport_device_not_found(monkeypatch):
    _fake_usb(monkeypatch, open_error=DeviceNotFoundError("No device"))

    with pytest.raises(DeviceError) as exc:
        _usb_send()

    assert str(exc.value) == message("usb_not_found", "04b8:0e15")


def test_usb_transport_uses_configured_ids(monkeypatch):
    _fake_usb(monkeypatch)

    asyncio.run(UsbTransport(timeout=2, default_ids=(0x0416, 0x5011)).send(PAYLOAD, UsbConnection()))

    assert FakeUsb.instances[0].ids == (0x0416, 0x5011)


class FakeCharacteristic:
    properties = ["write"]


class FakeService:
    def get_characteristic(self, uuid):
        return FakeCharacteristic()


class FakeServices:
    def get_service(self, uuid):
        return FakeService()


class FakeBleakClient:
    """Async context manager double for ``bleak.BleakClient``."""

    instances = []
    write_error = None

    def __init__(self, device, timeout=None):
        self.device = device
        self.services = FakeServices()
        self.mtu_size = 23
        self.chunks = []
        self.connected = False
        FakeBleakClient.instances.append(self)

    async def __aenter__(self):
        self.connected = True
        return self

    async def __aexit__(self, *exc_info):
        self.connected = False

    async def write_gatt_char(self, characteristic, data, response=False):
        if self.write_error:
            raise self.write_error
        self.chunks.append(data)


class FakeScanner:
    device = object()

    @classmethod
    async def find_device_by_name(cls, name, timeout=None):
        return cls.device


def _fake_ble(monkeypatch, write_error=None, device=FakeScanner.device):
    FakeBleakClient.instances = []
    monkeypatch.setattr(FakeBleakClient, "write_error", write_error)
    monkeypatch.setattr(FakeScanner, "device", device)
    monkeypatch.setattr(transport_module, "BleakClient", FakeBleakClient)
    monkeypatch.setattr(transport_module, "BleakScanner", FakeScanner)


def _ble_send():
    transport = BluetoothTransport(scan_timeout=1, timeout=1, service_uuid="svc", characteristic_uuid="chr")
    return asyncio.run(transport.send(PAYLOAD * 3, BluetoothConnection("Printer-58")))


def test_bluetooth_transport_writes_in_mtu_chunks(monkeypatch):
    _fake_ble(monkeypatch)

    _ble_send()

    client, = FakeBleakClient.instances
    assert b"".join(client.chunks) == PAYLOAD * 3
    assert max(len(chunk) for chunk in client.chunks) == 20
    assert client.connected is False


def test_bluetooth_transport_disconnects_after_write_failure(monkeypatch):
    _fake_ble(monkeypatch, write_error=BleakError("GATT write failed"))

    with pytest.raises(DeviceError) as exc:
        _ble_send()

    assert str(exc.value) == message("open_failed", "Printer-58: GATT write failed")
    assert FakeBleakClient.instances[0].connected is False


def test_bluetooth_transport_device_not_found(monkeypatch):
    _fake_ble(monkeypatch, device=None)

    with pytest.raises(DeviceError) as exc:
        _ble_send()

    assert str(exc.value) == message("bluetooth_not_found", "Printer-58")
    assert FakeBleakClient.instances == []
