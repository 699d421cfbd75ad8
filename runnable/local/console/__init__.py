"""
This module initializes the console package, exposing the command execution
used by `runnablectl` to control a running master.
"""

from .process import execute_command
from .handler import display_status, print_help, signal_master

__all__ = ["execute_command", "display_status", "print_help", "signal_master"]
