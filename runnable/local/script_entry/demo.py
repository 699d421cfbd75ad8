"""
A minimal application run under the supervisor.

Started as `python -m runnable.local.script_entry.demo`, the process becomes
the master and re-executes this same module for each worker. Every worker
logs a heartbeat until it is asked to stop.
"""
import os
import time
import logging

from runnable.local.role import resolve_role
from runnable.local.supervisor import Application, LifecycleState, Supervisor
from runnable.log.setup import setup_logging

log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 5.0


class DemoApplication(Application):
    def init_master(self, supervisor: Supervisor) -> None:
        log.info(f"Demo master ready with {len(supervisor.pool)} worker(s).")

    def init_worker(self, supervisor: Supervisor) -> None:
        log.debug(f"Demo worker {supervisor.worker_id} initialized.")

    def start_worker(self, supervisor: Supervisor) -> None:
        while supervisor.state is LifecycleState.RUNNING:
            log.info(f"Worker {supervisor.worker_id} (PID {os.getpid()}) alive.")
            time.sleep(HEARTBEAT_INTERVAL)


def main() -> None:
    setup_logging(role=resolve_role())
    Supervisor(application=DemoApplication()).run()


if __name__ == "__main__":
    main()
