"""
Local package for Runnable.

This package provides the effective configuration, process role resolution
and the OS plumbing (identity, status) around the supervisor.
"""

from .config import effective_settings as config
from .role import ProcessRole, resolve_role

__all__ = ["config", "ProcessRole", "resolve_role"]
