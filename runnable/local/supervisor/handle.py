import time
import enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .timers import Timer


class WorkerState(enum.Enum):
    STARTING = "starting"
    ONLINE = "online"
    SHUTTING_DOWN_GRACEFUL = "shutting_down_graceful"
    TERMINATED = "terminated"


class WorkerHandle:
    """
    Identity and lifecycle state of one worker process.

    Handles are created and owned by the WorkerPool. The state is the single
    source of truth for respawn decisions: an exit is expected exactly when
    the master asked the worker to stop before it exited.
    """

    def __init__(self, worker_id: int, pid: int, started_at: Optional[float] = None) -> None:
        self.id = worker_id
        self.pid = pid
        self.state = WorkerState.STARTING
        self.started_at = time.time() if started_at is None else started_at
        self.exit_code: Optional[int] = None
        self.exit_signal: Optional[int] = None
        self.grace_timer: Optional["Timer"] = None

    def __repr__(self) -> str:
        return f"<WorkerHandle id={self.id} pid={self.pid} state={self.state.value}>"

    @property
    def name(self) -> str:
        return f"worker-{self.id}"

    @property
    def expected_exit(self) -> bool:
        """True once the master has deliberately asked this worker to stop."""
        return self.state is WorkerState.SHUTTING_DOWN_GRACEFUL

    @property
    def is_live(self) -> bool:
        """True while the worker counts towards the pool's target size."""
        return self.state in (WorkerState.STARTING, WorkerState.ONLINE)

    def mark_online(self) -> bool:
        """STARTING -> ONLINE. Returns False if the handle was not starting."""
        if self.state is not WorkerState.STARTING:
            return False
        self.state = WorkerState.ONLINE
        return True

    def mark_shutting_down(self) -> bool:
        """Moves a live worker to SHUTTING_DOWN_GRACEFUL. Returns False if it was not live."""
        if not self.is_live:
            return False
        self.state = WorkerState.SHUTTING_DOWN_GRACEFUL
        return True

    def mark_terminated(self, exit_code: Optional[int], exit_signal: Optional[int]) -> None:
        self.state = WorkerState.TERMINATED
        self.exit_code = exit_code
        self.exit_signal = exit_signal
        if self.grace_timer is not None:
            self.grace_timer.cancel()
            self.grace_timer = None
