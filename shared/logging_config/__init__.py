"""
Unified Logging System for Backend Services
"""

from .config import setup_logging
from .formatters import SimpleConsoleFormatter, StructuredJSONFormatter

__all__ = [
    "setup_logging",
    "SimpleConsoleFormatter",
    "StructuredJSONFormatter",
]
