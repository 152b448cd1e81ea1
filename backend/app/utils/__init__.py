"""
Utility functions for CustodyFolio.

This package contains:
- datetime_utils: UTC helpers (SQLite stores naive UTC datetimes)
- currency_utils: token symbol normalization and ISO 4217 checks
"""
