import logging
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Iterator, List, Optional

from runnable.local.config import effective_settings as config
from .handle import WorkerHandle, WorkerState
from .messages import SHUTDOWN
from .process_utils import EXIT, ONLINE, ProcessEvent
from .timers import Scheduler

if TYPE_CHECKING:
    from .process_utils import PopenBackend

log = logging.getLogger(__name__)


class WorkerSpawnError(RuntimeError):
    """Raised by WorkerPool.fork when one or more worker processes could not be created."""

    def __init__(self, failed: int, requested: int, cause: Exception) -> None:
        super().__init__(f"Failed to fork {failed} of {requested} worker(s): {cause}")
        self.failed = failed
        self.requested = requested
        self.cause = cause


def describe_exit(exit_code: Optional[int], exit_signal: Optional[int]) -> str:
    if exit_signal is not None:
        return f"signal {exit_signal}"
    return f"exit code {exit_code}"


class WorkerPool:
    """
    Owns the WorkerHandles and provides the only operations that change pool membership.

    All methods are expected to run on the master's supervision loop, so the
    handle set is never mutated concurrently.
    """

    def __init__(self, backend: "PopenBackend", scheduler: Scheduler, grace_period: Optional[float] = None) -> None:
        self.backend = backend
        self.scheduler = scheduler
        self.grace_period = float(config.GRACEFUL_SHUTDOWN_TIMEOUT if grace_period is None else grace_period)
        self.target = 0  # steady-state size, set by the Supervisor on start
        self.closed = False
        self.workers: Dict[int, WorkerHandle] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self.workers)

    def __iter__(self) -> Iterator[WorkerHandle]:
        return iter(list(self.workers.values()))

    def get(self, pid: int) -> Optional[WorkerHandle]:
        return self.workers.get(pid)

    @property
    def live_count(self) -> int:
        """Number of workers in STARTING or ONLINE state."""
        return sum(1 for handle in self.workers.values() if handle.is_live)

    #* --- Membership ---
    def fork(self, n: int = 1) -> List[WorkerHandle]:
        """
        Creates `n` new worker processes, each registered in STARTING state.

        Every attempt is made even if an earlier one fails.

        :param n: Number of workers to create.
        :return: The handles of the workers that were created.
        :raises WorkerSpawnError: If at least one attempt failed.
        """
        spawned: List[WorkerHandle] = []
        failures: List[Exception] = []
        for _ in range(n):
            worker_id = self._next_id
            self._next_id += 1
            try:
                pid = self.backend.spawn(worker_id)
            except Exception as e:
                log.error(f"Failed to fork worker {worker_id}: {e}")
                failures.append(e)
                continue
            handle = WorkerHandle(worker_id, pid)
            self.workers[pid] = handle
            spawned.append(handle)
            log.info(f"Worker {worker_id} forked with PID: {pid}")

        if failures:
            raise WorkerSpawnError(len(failures), n, failures[-1])
        return spawned

    def each_worker(self, visit: Callable[[WorkerHandle], None]) -> None:
        """Applies `visit` to every tracked worker, in no guaranteed order."""
        for handle in list(self.workers.values()):
            visit(handle)

    def close(self) -> None:
        """Stops respawning. Used once the master is shutting down."""
        self.closed = True

    #* --- Graceful Shutdown ---
    def stop_workers(self) -> int:
        """
        Asks every live worker to shut down and arms its grace timer.

        Workers already shutting down are left alone, so calling this again
        neither re-sends the message nor extends their grace period.

        :return: The number of workers asked to stop by this call.
        """
        asked = 0
        for handle in list(self.workers.values()):
            if not handle.is_live:
                continue
            if not self.backend.send_message(handle.pid, SHUTDOWN):
                log.debug(f"Shutdown message to worker {handle.id} (PID {handle.pid}) was not delivered.")
            handle.mark_shutting_down()
            handle.grace_timer = self.scheduler.call_later(
                self.grace_period, lambda h=handle: self._grace_period_expired(h)
            )
            asked += 1

        if asked:
            log.info(f"Asked {asked} worker(s) to shut down, grace period {self.grace_period:g}s.")
        return asked

    def _grace_period_expired(self, handle: WorkerHandle) -> None:
        handle.grace_timer = None
        if self.workers.get(handle.pid) is not handle or handle.state is WorkerState.TERMINATED:
            log.debug(f"Worker {handle.id} (PID {handle.pid}) already exited, no kill needed.")
            return

        log.warning(f"Worker {handle.id} (PID {handle.pid}) did not exit within {self.grace_period:g}s. Killing it.")
        if not self.backend.kill(handle.pid):
            log.debug(f"Worker {handle.id} (PID {handle.pid}) was already gone.")

    #* --- OS Notifications ---
    def on_worker_online(self, handle: WorkerHandle) -> None:
        if handle.mark_online():
            log.info(f"Worker {handle.id} (PID {handle.pid}) is online.")

    def on_worker_exit(self, handle: WorkerHandle, exit_code: Optional[int], exit_signal: Optional[int]) -> Optional[WorkerHandle]:
        """
        Removes an exited worker and respawns it unless the exit was requested.

        There is deliberately no retry limit or backoff: a worker that crashes
        on every start is reforked every time.

        :return: The replacement handle, if one was forked.
        """
        if self.workers.get(handle.pid) is handle:
            del self.workers[handle.pid]
        expected = handle.expected_exit
        handle.mark_terminated(exit_code, exit_signal)

        if expected:
            log.info(f"Worker {handle.id} (PID {handle.pid}) exited ({describe_exit(exit_code, exit_signal)}).")
            return None

        log.warning(f"Worker {handle.id} (PID {handle.pid}) died unexpectedly ({describe_exit(exit_code, exit_signal)}).")
        if self.closed:
            log.info("Pool is closed, not forking a replacement.")
            return None
        if self.live_count >= self.target:
            log.info(f"Pool already has {self.live_count}/{self.target} live worker(s), not forking a replacement.")
            return None

        try:
            replacement = self.fork(1)[0]
        except WorkerSpawnError as e:
            log.error(f"Could not replace worker {handle.id}: {e}")
            return None
        log.info(f"Worker {handle.id} replaced by worker {replacement.id} (PID {replacement.pid}).")
        return replacement

    def dispatch(self, events: Iterable[ProcessEvent]) -> None:
        """Routes OS notifications to on_worker_online / on_worker_exit."""
        for event in events:
            handle = self.workers.get(event.pid)
            if handle is None:
                log.debug(f"Ignoring '{event.kind}' event for untracked PID {event.pid}.")
                continue
            if event.kind == ONLINE:
                self.on_worker_online(handle)
            elif event.kind == EXIT:
                self.on_worker_exit(handle, event.exit_code, event.signal)
