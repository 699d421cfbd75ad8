"""
Process role resolution.

Every process started by Runnable is either the master, which owns the worker
pool, or one of its workers. The master marks each worker it spawns with the
`RUNNABLE_WORKER_ID` environment variable, so a process can tell which branch
of the lifecycle it has to take before anything else happens.
"""
import os
import enum
from typing import Mapping, Optional

from runnable.settings import WORKER_ID_ENV


class ProcessRole(enum.Enum):
    MASTER = "master"
    WORKER = "worker"


def resolve_role(environ: Optional[Mapping[str, str]] = None) -> ProcessRole:
    """
    Determines the role of the current process from its environment.

    :param environ: The environment to inspect, defaults to `os.environ`.
    :return: ProcessRole.WORKER if the worker marker is present, else ProcessRole.MASTER.
    """
    environ = os.environ if environ is None else environ
    return ProcessRole.WORKER if environ.get(WORKER_ID_ENV) else ProcessRole.MASTER


def worker_id(environ: Optional[Mapping[str, str]] = None) -> Optional[int]:
    """Returns the id the master assigned to this worker, or None on the master."""
    environ = os.environ if environ is None else environ
    raw = environ.get(WORKER_ID_ENV)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
