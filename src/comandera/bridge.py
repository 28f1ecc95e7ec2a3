"""
Local printer bridge.

A small HTTP service for clients that cannot open printer sockets or USB
devices themselves. ``POST /print`` accepts a test request or a base64
ESC/POS buffer and writes it to the described printer; ``GET /status``
answers liveness checks.
"""

import base64
import binascii
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from . import BRIDGE_VERSION
from .config import config
from .errors import PrinterConfigError, message
from .models import Printer
from .transport import DeviceTransport
from .utils.formatting import TicketFormatter
from .utils.logger import logger


class BridgePrinter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    connection_type: str
    ip_address: Optional[str] = None
    port: Optional[int] = None
    vendor_id: Optional[str] = None
    product_id: Optional[str] = None
    device_name: Optional[str] = None


class PrintRequest(BaseModel):
    type: str
    data: Optional[str] = None
    printer: BridgePrinter


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def create_app(transport=None, formatter: Optional[TicketFormatter] = None) -> FastAPI:
    """
    Build the bridge application.

    Args:
        transport: Device transport used for writes (defaults to ``DeviceTransport()``)
        formatter: Formatter for the server-side test page
    """
    transport = transport or DeviceTransport()
    formatter = formatter or TicketFormatter.from_config()

    app = FastAPI(title="Comandera Printer Bridge", version=BRIDGE_VERSION)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.BRIDGE_CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/status")
    async def status():
        return {"status": "online", "bridge": BRIDGE_VERSION}

    @app.post("/print")
    async def print_job(req: PrintRequest):
        logger.bridge_request(req.type, req.printer.name, req.printer.connection_type)

        if req.type == "test":
            data = formatter.format_bridge_test(BRIDGE_VERSION, datetime.now())
            success_message = "Ticket de prueba enviado."
        elif req.type == "raw":
            try:
                data = base64.b64decode(req.data or "", validate=True)
            except (binascii.Error, ValueError):
                return _failure(400, message("invalid_payload"))
            if not data:
                return _failure(400, message("invalid_payload"))
            success_message = "Impresión completada."
        else:
            return _failure(400, message("unknown_command"))

        try:
            printer = Printer.from_row(req.printer.model_dump())
        except PrinterConfigError as e:
            logger.error(f"❌ Invalid printer in request: {e}")
            return _failure(500, message("open_failed", str(e)))

        result = await transport.send(data, printer)
        if not result.success:
            return _failure(500, result.error or message("write_failed"))
        return {"success": True, "message": success_message}

    return app


def run(host: Optional[str] = None, port: Optional[int] = None):
    """Serve the bridge with uvicorn (blocking)."""
    host = host or config.BRIDGE_HOST
    port = port or config.BRIDGE_PORT
    logger.info("🚀 Printer bridge starting", url=f"http://{host}:{port}", version=BRIDGE_VERSION)
    uvicorn.run(create_app(), host=host, port=port, log_level=config.LOG_LEVEL.lower())
