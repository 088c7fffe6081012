"""Spectral and time-domain pitch measurement."""
