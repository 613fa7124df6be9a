"""
Ledgerline Core Accounting

Transactional accounting engine for small-business invoicing, billing,
inventory and reporting. Every money-moving event produces a balanced,
auditable journal entry; balances are always derived from posted lines.
"""

__version__ = "1.0.0"
