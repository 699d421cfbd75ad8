import os
import sys
import time
import enum
import logging
from pathlib import Path
from typing import IO, Any, Callable, Dict, Optional

from runnable.local.config import effective_settings as config
from runnable.local.identity import IdentitySpec, apply_process_attributes
from runnable.local.role import ProcessRole, resolve_role, worker_id
from runnable.local.status import report_process_info
from . import persistence
from .application import Application
from .messages import MessageListener
from .pool import WorkerPool, WorkerSpawnError
from .process_utils import PopenBackend
from .signals import EVENT_STOP, Installer, SignalDispatcher
from .timers import Scheduler

log = logging.getLogger(__name__)


class LifecycleState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Supervisor:
    """
    Sequences init, start, stop and restart for the master and its workers.

    There is exactly one Supervisor per OS process. The same program runs in
    both roles: the master forks workers by re-executing itself, and each
    worker constructs its own Supervisor, which resolves to the worker role.
    """
    _instance = None

    def __new__(cls, *args: Any, **kwargs: Any) -> "Supervisor":
        if cls._instance is None:
            cls._instance = super(Supervisor, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(
        self,
        application: Optional[Application] = None,
        master_title: Optional[str] = None,
        worker_title: Optional[str] = None,
        uid: IdentitySpec = None,
        gid: IdentitySpec = None,
        workers_num: Optional[int] = None,
        *,
        role: Optional[ProcessRole] = None,
        backend: Optional[PopenBackend] = None,
        clock: Optional[Callable[[], float]] = None,
        signal_installer: Optional[Installer] = None,
        control_stream: Optional[IO] = None,
        pid_file_path: Optional[Path] = None,
        grace_period: Optional[float] = None,
    ) -> None:
        """
        Initializes the Supervisor state. Later constructions in the same
        process return the first instance unchanged.

        :param application: The hooks of the embedding application.
        :param master_title: Process title of the master, defaults to MASTER_TITLE.
        :param worker_title: Process title of the workers, defaults to WORKER_TITLE.
        :param uid: User to drop to, defaults to RUN_UID.
        :param gid: Group to drop to, defaults to RUN_GID.
        :param workers_num: Steady-state pool size, defaults to WORKERS_NUM.
        :param role: Forces the process role instead of resolving it from the environment.
        :param backend: The OS process collaborator.
        :param clock: Monotonic clock driving the grace timers.
        :param signal_installer: Replaces `signal.signal` when binding handlers.
        :param control_stream: The stream control messages arrive on (worker only), defaults to stdin.
        :param pid_file_path: Where the master writes its PID, defaults to PID_FILE_PATH.
        :param grace_period: Seconds a worker gets to exit before it is killed.
        """
        if getattr(self, '_initialized', False):
            return

        self.role = role or resolve_role()
        self.application = application or Application()
        self.master_title = config.MASTER_TITLE if master_title is None else master_title
        self.worker_title = config.WORKER_TITLE if worker_title is None else worker_title
        self.uid = config.RUN_UID if uid is None else uid
        self.gid = config.RUN_GID if gid is None else gid
        self.workers_num = workers_num or config.WORKERS_NUM or config.DEFAULT_WORKERS_NUM
        self.pid_file_path = config.PID_FILE_PATH if pid_file_path is None else pid_file_path
        self.sleep_interval = config.SUPERVISOR_SLEEP_INTERVAL
        self.worker_id = worker_id() if self.role is ProcessRole.WORKER else None

        self.backend = backend or PopenBackend()
        self.scheduler = Scheduler(clock) if clock else Scheduler()
        self.pool = WorkerPool(self.backend, self.scheduler, grace_period)
        self.dispatcher = SignalDispatcher.for_supervisor(self, signal_installer)
        self.control_stream = control_stream
        self.listener: Optional[MessageListener] = None

        self.state = LifecycleState.UNINITIALIZED
        self.start_time: Optional[float] = None
        self._initialized = True

    def __repr__(self) -> str:
        return f"<Supervisor role={self.role.value} state={self.state.value} pid={os.getpid()}>"

    @property
    def is_master(self) -> bool:
        return self.role is ProcessRole.MASTER

    @property
    def is_worker(self) -> bool:
        return self.role is ProcessRole.WORKER

    @property
    def title(self) -> str:
        return self.master_title if self.is_master else self.worker_title

    #* --- Lifecycle ---
    def init(self) -> "Supervisor":
        """
        Installs the signal bindings and applies title, gid and uid.
        Failing to apply the process attributes is only a warning.
        """
        if self.state is not LifecycleState.UNINITIALIZED:
            return self

        self.dispatcher.install()

        try:
            apply_process_attributes(self.title, self.uid, self.gid)
        except Exception as e:
            log.warning(f"Failed to set process attributes: {e}")

        self.state = LifecycleState.INITIALIZED
        if self.is_master:
            return self

        self.application.init_worker(self)
        return self

    def start(self) -> "Supervisor":
        """
        Starts this process in its role: the master forks the worker pool,
        a worker starts listening for control messages and runs its application.
        """
        self.init()
        if self.state is not LifecycleState.INITIALIZED:
            log.debug(f"Start ignored, supervisor is {self.state.value}.")
            return self

        self.start_time = time.time()
        self.state = LifecycleState.RUNNING

        if self.is_master:
            log.info("=" * 20 + f" Master (PID {os.getpid()}) starting {self.workers_num} worker(s) " + "=" * 20)
            if self.pid_file_path:
                persistence.write_pid_file(Path(self.pid_file_path), os.getpid())
            self.pool.target = self.workers_num
            self._fork_workers(self.workers_num)
            self.application.init_master(self)
            return self

        log.info(f"Worker {self.worker_id} (PID {os.getpid()}) started.")
        self.listener = MessageListener(
            self.control_stream or sys.stdin,
            self.dispatcher.deliver_message,
            on_disconnect=self._on_master_gone,
        ).start()
        self.application.start_worker(self)
        return self

    def stop(self, keep_master_alive: bool = False) -> "Supervisor":
        """
        Stops the current process with exit code 0.

        A worker exits right away. The master with `keep_master_alive` stays up
        (restart relies on it); otherwise it stops respawning, asks the remaining
        workers to shut down and exits once the pool has drained. Calls made
        while a stop is already in progress do nothing.

        :param keep_master_alive: On the master, skip the exit.
        """
        if self.state in (LifecycleState.STOPPING, LifecycleState.STOPPED):
            log.debug("Stop already in progress.")
            return self

        if self.is_worker:
            log.info(f"Worker {self.worker_id} (PID {os.getpid()}) stopping.")
            self.state = LifecycleState.STOPPED
            self.backend.exit(0)
            return self

        if keep_master_alive:
            return self

        log.info(f"Master stopping, waiting for {len(self.pool)} worker(s) to exit...")
        self.state = LifecycleState.STOPPING
        self.pool.close()
        self.pool.stop_workers()
        self._finish_stop_if_drained()
        return self

    def restart(self) -> "Supervisor":
        """
        Restarts in place. The master keeps running, gracefully stops its
        current workers and forks a fresh set. A worker exits, and its master
        replaces it.
        """
        if self.state in (LifecycleState.STOPPING, LifecycleState.STOPPED):
            log.warning("Restart ignored, supervisor is stopping.")
            return self

        self.stop(keep_master_alive=True)

        if self.is_master:
            log.info(f"Restarting worker pool with {self.workers_num} fresh worker(s)...")
            self.pool.stop_workers()
            self._fork_workers(self.workers_num)
        return self

    def process_info(self) -> Dict[str, Any]:
        """Reports pid, memory usage and uptime of this process."""
        return report_process_info(log)

    def exit_now(self) -> None:
        """Leaves the process immediately with exit code 0 (the `shutdown` message)."""
        self.state = LifecycleState.STOPPED
        self.backend.exit(0)

    def _on_master_gone(self) -> None:
        if self.state in (LifecycleState.STOPPING, LifecycleState.STOPPED):
            return
        log.warning("Control channel closed, the master is gone. Exiting.")
        self.exit_now()

    def _fork_workers(self, n: int) -> None:
        try:
            self.pool.fork(n)
        except WorkerSpawnError as e:
            log.error(f"{e}. Pool is at {self.pool.live_count}/{self.workers_num} workers.")

    def _finish_stop_if_drained(self) -> bool:
        if self.state is not LifecycleState.STOPPING or len(self.pool):
            return False

        self.state = LifecycleState.STOPPED
        if self.pid_file_path and persistence.get_master_pid(Path(self.pid_file_path)) == os.getpid():
            persistence.remove_pid_file(Path(self.pid_file_path))
        if self.start_time:
            log.info(f"Master stop sequence completed. Total runtime: {time.strftime('%H:%M:%S', time.gmtime(time.time() - self.start_time))}")
        else:
            log.info("Master stop sequence completed.")
        self.backend.exit(0)
        return True

    #* --- Main Loops ---
    def run(self) -> None:
        """Starts the process and blocks for its lifetime."""
        self.start()
        if self.is_master:
            self.supervision_loop()
        else:
            self.wait()

    def tick(self) -> None:
        """One iteration of the supervision loop."""
        self.dispatcher.drain()
        self.pool.dispatch(self.backend.poll())
        self.scheduler.run_due()
        self._finish_stop_if_drained()

    def supervision_loop(self) -> None:
        """Master loop: applies queued signals, reacts to worker events and fires grace timers."""
        log.info("Supervisor started. Monitoring worker processes.")

        while self.state in (LifecycleState.RUNNING, LifecycleState.STOPPING):
            try:
                self.tick()
                if self.state is LifecycleState.STOPPED:
                    break
                time.sleep(self.sleep_interval)

            except KeyboardInterrupt:
                log.info("Supervisor loop interrupted by user.")
                self.dispatcher.deliver(EVENT_STOP)
            except Exception as e:
                log.critical(f"Critical error in supervisor loop: {e}", exc_info=True)
                if self.state is LifecycleState.STOPPING:
                    self.state = LifecycleState.STOPPED
                    self.backend.exit(1)
                    return
                self.stop()

    def wait(self) -> None:
        """Worker idle loop, ended by a stop signal or a shutdown message."""
        while self.state is LifecycleState.RUNNING:
            time.sleep(self.sleep_interval)
