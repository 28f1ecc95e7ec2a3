"""
Comandera command line.

    comandera bridge                  serve the local printer bridge
    comandera listen                  print comandas/tickets for MQTT order events
    comandera print-order ORDER_ID    print the comandas of one order
    comandera ticket ORDER_ID         print the customer ticket of one order
    comandera test-printer PRINTER_ID send the self-test page
    comandera scan                    look for network/USB/Bluetooth printers
    comandera auto-configure          assign category printers from names
    comandera bridge-status           check that the bridge is running
"""

import argparse
import asyncio
import json
import signal
import sys
import time
from typing import List, Optional

from . import BRIDGE_VERSION, __version__
from .config import config
from .discovery import detect_bluetooth_printers, detect_usb_printers, network_printers, scan_network
from .errors import ComanderaError
from .mqtt_client import OrderEventListener
from .printer_manager import PrinterManager
from .registry import PrinterRegistry
from .routing import apply_auto_configuration
from .store import MemoryStore, PostgrestStore
from .transport import RelayTransport, make_transport
from .utils.logger import logger


def build_store():
    """PostgREST store when configured, otherwise an empty in-memory store."""
    if config.SUPABASE_URL:
        return PostgrestStore.from_config()
    logger.warning("⚠️ SUPABASE_URL not set, using in-memory store")
    return MemoryStore()


def build_manager(store, mode: Optional[str] = None) -> PrinterManager:
    registry = PrinterRegistry(store, branch_id=config.BRANCH_ID)
    return PrinterManager(store, registry, make_transport(mode))


class ListenerApp:
    """Long-running order listener: MQTT events in, print jobs out."""

    def __init__(self, mode: Optional[str] = None, status_interval: float = 60):
        self.mode = mode
        self.status_interval = status_interval
        self.running = False
        self.startup_time = time.time()
        self.listener: Optional[OrderEventListener] = None
        self.manager: Optional[PrinterManager] = None

        # Setup signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    async def start(self, store) -> bool:
        """
        Load printers and connect to the broker.

        Returns:
            True if started successfully, False otherwise
        """
        logger.info("🚀 Starting Comandera order listener...")
        logger.info(str(config))

        if not config.BRANCH_ID:
            logger.error("❌ BRANCH_ID is required to listen for orders")
            return False

        self.manager = build_manager(store, self.mode)
        try:
            await self.manager.start()
        except ComanderaError as e:
            logger.error(f"❌ Failed to load printers: {str(e)}")
            return False
        logger.info("🖨️ Printers loaded", count=len(self.manager.printers))

        self.listener = OrderEventListener(self.manager, asyncio.get_running_loop())
        if not await asyncio.to_thread(self.listener.connect):
            logger.error("❌ Failed to connect to MQTT broker")
            return False

        self.running = True
        logger.info("✅ Comandera order listener started successfully")
        logger.info(f"📡 Listening for orders on: {config.TOPIC_ORDERS}")
        return True

    async def _run(self) -> bool:
        store = build_store()
        try:
            if not await self.start(store):
                return False

            last_status = time.time()
            while self.running:
                await asyncio.sleep(1)
                if time.time() - last_status >= self.status_interval:
                    self._log_status()
                    last_status = time.time()
            return True
        finally:
            self.stop()
            await store.close()

    def run(self) -> bool:
        """Run until SIGINT/SIGTERM."""
        return asyncio.run(self._run())

    def stop(self):
        logger.info("🛑 Stopping Comandera order listener...")
        self.running = False
        if self.listener:
            self.listener.disconnect()
        logger.info("✅ Comandera order listener stopped")

    def _log_status(self):
        info = self.listener.get_connection_info()
        logger.info("📊 Status update",
                    uptime_seconds=int(time.time() - self.startup_time),
                    mqtt_connected=info["connected"],
                    messages_received=info["stats"]["messages_received"],
                    jobs_completed=info["stats"]["jobs_completed"],
                    jobs_failed=info["stats"]["jobs_failed"])

    def _signal_handler(self, signum, frame):
        logger.info(f"📝 Received signal {signum}")
        self.running = False


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _with_manager(args, action):
    store = build_store()
    try:
        manager = build_manager(store, args.mode)
        await manager.start()
        return await action(manager)
    finally:
        await store.close()


async def cmd_print_order(args) -> bool:
    async def action(manager: PrinterManager):
        results = await manager.process_order_comanda(args.order_id)
        _print_json({destination.value: ok for destination, ok in results.items()})
        if manager.last_error:
            print(f"⚠️ {manager.last_error}")
        return bool(results) and all(results.values())
    return await _with_manager(args, action)


async def cmd_ticket(args) -> bool:
    async def action(manager: PrinterManager):
        ok = await manager.print_ticket(args.order_id)
        print("✅ Ticket impreso" if ok else f"❌ {manager.last_error}")
        return ok
    return await _with_manager(args, action)


async def cmd_test_printer(args) -> bool:
    async def action(manager: PrinterManager):
        ok = await manager.test_printer(args.printer_id)
        print("✅ Test enviado" if ok else f"❌ {manager.last_error}")
        return ok
    return await _with_manager(args, action)


async def cmd_scan(args) -> bool:
    found = []
    if not args.skip_network:
        outcomes = await scan_network(args.range or None, port=args.port, timeout=args.timeout)
        found.extend(network_printers(outcomes))
    if args.usb:
        found.extend(await asyncio.to_thread(detect_usb_printers))
    if args.bluetooth:
        found.extend(await detect_bluetooth_printers())

    _print_json([printer.to_row() for printer in found])
    return True


async def cmd_auto_configure(args) -> bool:
    store = build_store()
    try:
        result = await apply_auto_configuration(store, config.BRANCH_ID)
    finally:
        await store.close()
    _print_json(result.to_dict())
    return result.error is None


async def cmd_bridge_status(args) -> bool:
    status = await RelayTransport(args.url).status()
    _print_json(status)
    return status.get("status") == "online"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comandera", description="Restaurant comanda and ticket printing")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--mode", choices=("relay", "direct"), default=None,
                        help="Delivery mode (default: PRINT_MODE)")
    sub = parser.add_subparsers(dest="command", required=True)

    bridge = sub.add_parser("bridge", help="Serve the local printer bridge")
    bridge.add_argument("--host", default=None)
    bridge.add_argument("--port", type=int, default=None)

    sub.add_parser("listen", help="Print comandas for MQTT order events")

    print_order = sub.add_parser("print-order", help="Print the comandas of an order")
    print_order.add_argument("order_id")

    ticket = sub.add_parser("ticket", help="Print the customer ticket of an order")
    ticket.add_argument("order_id")

    test_printer = sub.add_parser("test-printer", help="Send the self-test page")
    test_printer.add_argument("printer_id")

    scan = sub.add_parser("scan", help="Look for printers")
    scan.add_argument("--range", action="append", help="Address range, e.g. 192.168.1.100-150 (repeatable)")
    scan.add_argument("--port", type=int, default=None)
    scan.add_argument("--timeout", type=float, default=None)
    scan.add_argument("--usb", action="store_true", help="Also list USB printers")
    scan.add_argument("--bluetooth", action="store_true", help="Also scan for BLE printers")
    scan.add_argument("--skip-network", action="store_true")

    sub.add_parser("auto-configure", help="Assign printers to categories by name")

    bridge_status = sub.add_parser("bridge-status", help="Check the printer bridge")
    bridge_status.add_argument("--url", default=None)

    return parser


COMMANDS = {
    "print-order": cmd_print_order,
    "ticket": cmd_ticket,
    "test-printer": cmd_test_printer,
    "scan": cmd_scan,
    "auto-configure": cmd_auto_configure,
    "bridge-status": cmd_bridge_status,
}


def _banner():
    print("=" * 60)
    print(f"🖨️  {BRIDGE_VERSION}")
    print("=" * 60)
    print(f"🏪 Branch: {config.BRANCH_ID or '-'}")
    print(f"🚚 Print mode: {config.PRINT_MODE}")
    print(f"📡 MQTT Broker: {config.MQTT_BROKER}:{config.MQTT_PORT}")
    print(f"🔗 Bridge: {config.BRIDGE_URL}")
    print("=" * 60)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.command == "bridge":
        from .bridge import run
        _banner()
        run(args.host, args.port)
        sys.exit(0)

    try:
        if args.command == "listen":
            _banner()
            success = ListenerApp(mode=args.mode).run()
        else:
            success = asyncio.run(COMMANDS[args.command](args))
    except ComanderaError as e:
        logger.error(f"❌ {str(e)}")
        success = False
    except KeyboardInterrupt:
        logger.info("📝 Received keyboard interrupt")
        success = False

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
