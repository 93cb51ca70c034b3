"""Cermin: event orders, QRIS payments and ticket issuance."""

__version__ = "0.1.0"
