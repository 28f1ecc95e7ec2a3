"""
Configuration management for the Comandera print service.
Handles loading and validation of environment variables and settings.
"""

import os
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


PRINT_MODES = ("relay", "direct")


def _split_list(value: str) -> List[str]:
    """Split a comma separated env value, dropping blanks."""
    return [part.strip() for part in value.split(",") if part.strip()]


class Config:
    """Configuration class for the print service."""

    def __init__(self):
        self._load_config()
        self._validate_config()

    def _load_config(self):
        """Load configuration from environment variables."""

        # Bridge (relay) configuration
        self.BRIDGE_HOST = os.getenv("BRIDGE_HOST", "127.0.0.1")
        self.BRIDGE_PORT = int(os.getenv("BRIDGE_PORT", "5000"))
        self.BRIDGE_URL = os.getenv("BRIDGE_URL", f"http://localhost:{self.BRIDGE_PORT}")
        self.BRIDGE_CORS_ORIGINS = _split_list(os.getenv("BRIDGE_CORS_ORIGINS", "*"))

        # Delivery configuration
        self.PRINT_MODE = os.getenv("PRINT_MODE", "relay").lower()
        self.RELAY_TIMEOUT = float(os.getenv("RELAY_TIMEOUT", "30"))
        self.NETWORK_TIMEOUT = float(os.getenv("NETWORK_TIMEOUT", "10"))
        self.DEFAULT_PRINTER_PORT = int(os.getenv("DEFAULT_PRINTER_PORT", "9100"))
        self.USB_VENDOR_ID = os.getenv("USB_VENDOR_ID", "")
        self.USB_PRODUCT_ID = os.getenv("USB_PRODUCT_ID", "")
        self.USB_TIMEOUT = float(os.getenv("USB_TIMEOUT", "10"))
        self.BLE_SERVICE_UUID = os.getenv("BLE_SERVICE_UUID", "000018f0-0000-1000-8000-00805f9b34fb")
        self.BLE_CHARACTERISTIC_UUID = os.getenv("BLE_CHARACTERISTIC_UUID", "00002af1-0000-1000-8000-00805f9b34fb")
        self.BLE_SCAN_TIMEOUT = float(os.getenv("BLE_SCAN_TIMEOUT", "8"))

        # Discovery configuration
        self.SCAN_RANGES = _split_list(
            os.getenv("SCAN_RANGES", "192.168.1.100-150,192.168.0.100-150,10.0.0.100-150")
        )
        self.SCAN_TIMEOUT = float(os.getenv("SCAN_TIMEOUT", "3"))
        self.SCAN_CONCURRENCY = int(os.getenv("SCAN_CONCURRENCY", "32"))

        # Formatting configuration
        self.LINE_WIDTH = int(os.getenv("LINE_WIDTH", "32"))
        self.TEXT_ENCODING = os.getenv("TEXT_ENCODING", "cp437")
        self.CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "$")

        # Ticket defaults (overridden by business settings from the store)
        self.BUSINESS_NAME = os.getenv("BUSINESS_NAME", "RESTAURANTE")
        self.TICKET_HEADER = os.getenv("TICKET_HEADER", "")
        self.TICKET_FOOTER = os.getenv("TICKET_FOOTER", "")
        self.TAX_RATE = float(os.getenv("TAX_RATE", "0.16"))
        self.TAX_NAME = os.getenv("TAX_NAME", "IVA")

        # Store configuration
        self.SUPABASE_URL = os.getenv("SUPABASE_URL", "")
        self.SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")
        self.BRANCH_ID = os.getenv("BRANCH_ID", "") or None

        # Order events (MQTT)
        self.MQTT_BROKER = os.getenv("MQTT_BROKER", "localhost")
        self.MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
        self.MQTT_USERNAME = os.getenv("MQTT_USERNAME", "")
        self.MQTT_PASSWORD = os.getenv("MQTT_PASSWORD", "")
        self.MQTT_KEEPALIVE = int(os.getenv("MQTT_KEEPALIVE", "60"))
        self.MQTT_QOS = int(os.getenv("MQTT_QOS", "1"))
        self.MQTT_TOPIC_PREFIX = os.getenv("MQTT_TOPIC_PREFIX", "comandera")

        # History
        self.PRINT_HISTORY_SIZE = int(os.getenv("PRINT_HISTORY_SIZE", "50"))

        # Logging Configuration
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FILE = os.getenv("LOG_FILE", "comandera.log")
        self.LOG_MAX_SIZE = os.getenv("LOG_MAX_SIZE", "10MB")
        self.LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))

        # Derived configurations
        branch = self.BRANCH_ID or "default"
        self.CLIENT_ID = f"Comandera-{branch}"
        self.TOPIC_ORDERS = f"{self.MQTT_TOPIC_PREFIX}/{branch}/orders"
        self.TOPIC_PRINT_STATUS = f"{self.MQTT_TOPIC_PREFIX}/{branch}/print-status"

    def _validate_config(self):
        """Validate configuration values."""

        for name in ("BRIDGE_PORT", "DEFAULT_PRINTER_PORT", "MQTT_PORT"):
            if not (1 <= getattr(self, name) <= 65535):
                raise ValueError(f"{name} must be between 1 and 65535")

        if self.PRINT_MODE not in PRINT_MODES:
            raise ValueError(f"PRINT_MODE must be one of {', '.join(PRINT_MODES)}")

        for name in ("RELAY_TIMEOUT", "NETWORK_TIMEOUT", "USB_TIMEOUT", "BLE_SCAN_TIMEOUT", "SCAN_TIMEOUT"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than 0")

        if not (1 <= self.SCAN_CONCURRENCY <= 512):
            raise ValueError("SCAN_CONCURRENCY must be between 1 and 512")

        if not (24 <= self.LINE_WIDTH <= 64):
            raise ValueError("LINE_WIDTH must be between 24 and 64 characters")

        if not (0 <= self.TAX_RATE < 1):
            raise ValueError("TAX_RATE must be a fraction between 0 and 1")

        if self.PRINT_HISTORY_SIZE < 1:
            raise ValueError("PRINT_HISTORY_SIZE must be at least 1")

        if self.MQTT_QOS not in (0, 1, 2):
            raise ValueError("MQTT_QOS must be 0, 1 or 2")

        try:
            "ñ".encode(self.TEXT_ENCODING)
        except LookupError:
            raise ValueError(f"TEXT_ENCODING {self.TEXT_ENCODING!r} is not a known codec")

    def usb_ids(self) -> Optional[tuple]:
        """Return (vendor_id, product_id) from config, or None when unset."""
        if not self.USB_VENDOR_ID or not self.USB_PRODUCT_ID:
            return None
        return int(self.USB_VENDOR_ID, 16), int(self.USB_PRODUCT_ID, 16)

    def get_mqtt_config(self) -> dict:
        """Get MQTT configuration as a dictionary."""
        return {
            "broker": self.MQTT_BROKER,
            "port": self.MQTT_PORT,
            "username": self.MQTT_USERNAME,
            "password": self.MQTT_PASSWORD,
            "keepalive": self.MQTT_KEEPALIVE,
            "qos": self.MQTT_QOS,
            "client_id": self.CLIENT_ID,
        }

    def get_topics(self) -> dict:
        """Get MQTT topics as a dictionary."""
        return {
            "orders": self.TOPIC_ORDERS,
            "print_status": self.TOPIC_PRINT_STATUS,
        }

    def __str__(self) -> str:
        """String representation of configuration."""
        return f"""
Comandera Configuration:
========================
Print Mode: {self.PRINT_MODE}
Bridge URL: {self.BRIDGE_URL}
Branch: {self.BRANCH_ID or '-'}
Store: {self.SUPABASE_URL or 'memory'}
MQTT Broker: {self.MQTT_BROKER}:{self.MQTT_PORT}
Line Width: {self.LINE_WIDTH} ({self.TEXT_ENCODING})
Tax: {self.TAX_NAME} {self.TAX_RATE:.2%}

Topics:
- Orders: {self.TOPIC_ORDERS}
- Print status: {self.TOPIC_PRINT_STATUS}
"""


# Global configuration instance
config = Config()
