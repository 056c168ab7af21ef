"""
Ledger - Source Package

The ledger consistency core of a personal finance tracker: accounts
(bank, cash, credit card), transactions against them, and the calculators
that turn stored balances into net worth and credit insights.

DESIGN PRINCIPLES:
1. A transaction and its balance delta are written together or not at all
2. Validate against the balance you are about to change, never a stale copy
3. One sign convention for credit balances, defined in one place
4. Derived figures are computed on read, never stored
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Team"
