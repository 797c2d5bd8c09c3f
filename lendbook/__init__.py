"""
Lendbook - Source Package

Lending/borrowing balance reconciliation for internal accounts and
external persons.

DESIGN PRINCIPLES:
1. The event log is the only source of truth
2. Balances are derived, never stored as authority
3. Archived events leave balances but stay in history
4. Legacy records are normalized once, at ingestion
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Lendbook Team"
