import signal
import logging
from collections import deque
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, Mapping, Optional

from .messages import SHUTDOWN

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)

EVENT_STOP = "SIGTERM"
EVENT_RESTART = "SIGUSR1"
EVENT_INFO = "SIGUSR2"

Action = Callable[[], None]
Installer = Callable[[str, Callable[..., None]], None]


def install_os_handler(signal_name: str, handler: Callable[..., None]) -> None:
    """
    Binds `handler` to the named OS signal, then unblocks it in case it was
    inherited blocked from the master. Must run on the main thread.
    """
    signum = getattr(signal, signal_name)
    signal.signal(signum, handler)
    signal.pthread_sigmask(signal.SIG_UNBLOCK, {signum})


def master_bindings(supervisor: "Supervisor") -> Dict[str, Action]:
    pool = supervisor.pool

    def on_stop() -> None:
        pool.stop_workers()
        supervisor.stop()

    def on_restart() -> None:
        pool.stop_workers()
        supervisor.restart()

    def on_info() -> None:
        pool.each_worker(lambda handle: supervisor.backend.send_signal(handle.pid, getattr(signal, EVENT_INFO)))
        supervisor.process_info()

    return {EVENT_STOP: on_stop, EVENT_RESTART: on_restart, EVENT_INFO: on_info}


def worker_bindings(supervisor: "Supervisor") -> Dict[str, Action]:
    return {
        EVENT_STOP: lambda: supervisor.stop(),
        EVENT_RESTART: lambda: supervisor.restart(),
        EVENT_INFO: lambda: supervisor.process_info(),
    }


class SignalDispatcher:
    """
    Binds OS signals and control messages to Supervisor actions.

    The bindings are fixed at construction and installed once. With
    `deferred=True` (the master) an OS signal only queues its name and the
    supervision loop runs the action through `drain()`; otherwise (a worker)
    the action runs inside the signal handler.
    """

    def __init__(
        self,
        bindings: Mapping[str, Action],
        message_handlers: Optional[Mapping[str, Action]] = None,
        installer: Optional[Installer] = None,
        deferred: bool = False,
    ) -> None:
        self.bindings = MappingProxyType(dict(bindings))
        self.message_handlers = MappingProxyType(dict(message_handlers or {}))
        self.installer = installer or install_os_handler
        self.deferred = deferred
        self.pending: Deque[str] = deque()
        self.installed = False

    @classmethod
    def for_supervisor(cls, supervisor: "Supervisor", installer: Optional[Installer] = None) -> "SignalDispatcher":
        """Builds the role-specific dispatcher of a Supervisor."""
        if supervisor.is_master:
            return cls(master_bindings(supervisor), installer=installer, deferred=True)
        return cls(
            worker_bindings(supervisor),
            message_handlers={SHUTDOWN: supervisor.exit_now},
            installer=installer,
        )

    def install(self) -> bool:
        """
        Installs the OS handlers. Only the first call has an effect.

        :return: True if the handlers were installed by this call.
        """
        if self.installed:
            return False
        for name in self.bindings:
            self.installer(name, self._make_handler(name))
        self.installed = True
        log.debug(f"Signal handlers installed for {', '.join(self.bindings)}.")
        return True

    def _make_handler(self, name: str) -> Callable[..., None]:
        def handler(signum: Optional[int] = None, frame: Any = None) -> None:
            if self.deferred:
                self.pending.append(name)
            else:
                self.deliver(name)
        return handler

    def deliver(self, name: str) -> None:
        """Runs the action bound to the signal `name`."""
        action = self.bindings.get(name)
        if action is None:
            log.warning(f"No action bound to signal '{name}'.")
            return
        log.info(f"Received {name}.")
        action()

    def drain(self) -> int:
        """Runs the actions of all queued signals in arrival order."""
        delivered = 0
        while self.pending:
            self.deliver(self.pending.popleft())
            delivered += 1
        return delivered

    def deliver_message(self, message: Mapping[str, Any]) -> None:
        """Runs the handler bound to a control message's type."""
        handler = self.message_handlers.get(message.get("type"))
        if handler is None:
            log.warning(f"No handler for control message {dict(message)!r}.")
            return
        log.info(f"Received '{message.get('type')}' message.")
        handler()
