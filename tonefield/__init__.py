"""Handpan and steel-tongue tuning analysis."""

__version__ = "0.1.0"
