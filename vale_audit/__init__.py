"""Automated audit of construction-material delivery receipts (vales)."""

__version__ = "0.1.0"
