"""Kiosk content & health engine."""

__version__ = "0.1.0"
