"""
Logging module for Runnable.
This module provides functionality to set up logging for the master and its workers.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
