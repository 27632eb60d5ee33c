"""Payee matching rules: automatic transaction categorization per tenant."""

__version__ = "0.1.0"
