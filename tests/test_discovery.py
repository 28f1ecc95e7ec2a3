import asyncio

import pytest

from comandera.discovery import DiscoveredPrinter, network_printers, parse_range, scan_network


def test_parse_range():
    assert parse_range("192.168.1.100-102") == ["192.168.1.100", "192.168.1.101", "192.168.1.102"]
    assert parse_range(" 10.0.0.7 ") == ["10.0.0.7"]


@pytest.mark.parametrize("value", ["192.168.1.150-100", "192.168.1.1-300", "printer.local", ""])
def test_parse_range_rejects_malformed(value):
    with pytest.raises(ValueError):
        parse_range(value)


def _scan_with_listener(ranges):
    async def run():
        async def handle(reader, writer):
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            return await scan_network(ranges, port=port, timeout=1, concurrency=4), port

    return asyncio.run(run())


def test_scan_reports_every_candidate():
    outcomes, port = _scan_with_listener(["127.0.0.1-2"])

    assert [o.address for o in outcomes] == ["127.0.0.1", "127.0.0.2"]
    assert outcomes[0].reachable is True
    assert outcomes[0].error is None
    assert outcomes[1].reachable is False
    assert outcomes[1].error


def test_scan_skips_bad_ranges():
    outcomes, port = _scan_with_listener(["not-a-range", "127.0.0.1"])

    assert len(outcomes) == 1
    assert outcomes[0].reachable is True


def test_network_printers_from_outcomes():
    outcomes, port = _scan_with_listener(["127.0.0.1-2"])

    found = network_printers(outcomes)

    assert found == [DiscoveredPrinter(name="Network Printer 127.0.0.1", connection_type="network",
                                       address="127.0.0.1", port=port)]
    assert found[0].to_row() == {
        "name": "Network Printer 127.0.0.1",
        "connection_type": "network",
        "ip_address": "127.0.0.1",
        "port": port,
    }


def test_discovered_usb_row_uses_hex_ids():
    printer = DiscoveredPrinter(name="TM-T20", connection_type="usb", vendor_id=0x04B8, product_id=0x0E15)
    assert printer.to_row() == {
        "name": "TM-T20",
        "connection_type": "usb",
        "vendor_id": "0x04b8",
        "product_id": "0x0e15",
    }


def test_scan_reports_timeouts(monkeypatch):
    async def never_connects(host, port, **kwargs):
        await asyncio.sleep(3600)

    monkeypatch.setattr(asyncio, "open_connection", never_connects)

    outcomes = asyncio.run(scan_network(["127.0.0.1-2"], port=9100, timeout=0.2))

    assert [(o.address, o.reachable, o.error) for o in outcomes] == [
        ("127.0.0.1", False, "timeout"),
        ("127.0.0.2", False, "timeout"),
    ]
    assert network_printers(outcomes) == []
