#!/usr/bin/env python3
"""
Comandera - restaurant comanda and ticket printing.

Routes order items to kitchen, bar, sushi and grill printers as ESC/POS
comandas, prints customer tickets and runs the local printer bridge.
See ``python main.py --help`` for the available commands.
"""

from comandera.main import main


if __name__ == "__main__":
    main()
