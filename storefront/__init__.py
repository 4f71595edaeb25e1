"""Storefront payments: signed sessions and order/payment reconciliation."""

__version__ = "0.1.0"
