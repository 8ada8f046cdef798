"""
Costing Kernel

Inventory costing core for shipped sales-order lines:
- FIFO consumption of receipt layers
- Append-only COGS allocation ledger with reversal rows
- Per-(order, SKU) idempotent allocation
- Structured logging and typed errors shared by every outer package
"""

__version__ = "0.1.0"
