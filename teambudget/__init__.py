"""
Team Budget Tracker - Source Package

Records per-team and per-member expenditures against monthly budgets
and backs a dashboard and an admin console.

DESIGN PRINCIPLES:
1. One persistence contract, two interchangeable backends
2. Remote store first, local store when it fails
3. Derived figures are computed, never stored
4. Every expenditure carries a frozen copy of its team/member names
"""

__version__ = "1.0.0"
__author__ = "Team Budget Tracker Team"
