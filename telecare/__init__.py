"""Telehealth scheduling and credit ledger service."""

__version__ = "1.0.0"
