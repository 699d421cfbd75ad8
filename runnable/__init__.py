"""
Runnable: a pre-fork process supervisor.

One master process forks a pool of worker processes, respawns the ones that
crash and coordinates graceful shutdown, restart and status reporting through
OS signals.
"""

from .local.role import ProcessRole
from .local.supervisor import Application, LifecycleState, Supervisor, WorkerState

__version__ = "1.0.0"

__all__ = ["Application", "LifecycleState", "ProcessRole", "Supervisor", "WorkerState"]
