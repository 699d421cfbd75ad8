"""
The Supervisor package.
Manages the lifecycle of the master process and its pool of workers.

This package contains the central Supervisor class and its helper modules,
which together handle forking, stopping, respawning and signalling the
worker processes.
"""
from .application import Application
from .handle import WorkerHandle, WorkerState
from .pool import WorkerPool, WorkerSpawnError
from .supervisor import LifecycleState, Supervisor

__all__ = ['Application', 'LifecycleState', 'Supervisor', 'WorkerHandle', 'WorkerPool', 'WorkerSpawnError', 'WorkerState']
