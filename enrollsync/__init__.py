"""Concurrent retrieval of paginated enrollment data into spreadsheets.

Usage:
    python -m enrollsync sync --period-id 123 --status ATIVA
    python -m enrollsync ping
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
