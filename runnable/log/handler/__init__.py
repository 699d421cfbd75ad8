"""
Logging handlers for Runnable.
This module provides the handlers that ship log records to remote backends.
"""

from .loki import LokiHandler

__all__ = ["LokiHandler"]
