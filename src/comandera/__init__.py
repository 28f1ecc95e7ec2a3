"""
Comandera - kitchen comanda and customer ticket printing for restaurant POS.
"""

__version__ = "1.0.0"
BRIDGE_VERSION = f"Comandera Printer Bridge v{__version__}"
