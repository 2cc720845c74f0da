"""
Budget Blocks - Core Package

The transactional engine behind a personal budgeting board:
cash positions ("bases"), blocks of planned and actual money movements,
and the pay period bands those blocks are filed under.

DESIGN PRINCIPLES:
1. A row's balance effect is applied exactly once and reversed exactly once
2. Band membership is derived from dates, never chosen ad hoc
3. Every destructive delete can be undone once
4. The store is an explicit handle, never a process-wide singleton
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Blocks Team"
