import os
import sys
import signal
import psutil
import logging
import threading
import subprocess
from contextlib import contextmanager
from typing import Dict, Iterator, List, NamedTuple, Optional, Set

from runnable.settings import WORKER_ID_ENV
from .messages import encode_message

log = logging.getLogger(__name__)

ONLINE = "online"
EXIT = "exit"
CONTROL_SIGNALS = {signal.SIGUSR1, signal.SIGUSR2}


class ProcessEvent(NamedTuple):
    """An OS notification about a worker process, consumed by the WorkerPool."""
    kind: str
    pid: int
    exit_code: Optional[int] = None
    signal: Optional[int] = None


#* --- Process Status & Monitoring ---
def _get_proc_status_string(proc: psutil.Process) -> str:
    """Gets a string representation of a process status."""
    try:
        if proc.status() in (psutil.STATUS_ZOMBIE, psutil.STATUS_DEAD):
            return "zombie"
        return "running"
    except psutil.NoSuchProcess:
        return "stopped"
    except psutil.Error:
        return "unknown"

def send_signal(proc: psutil.Process, signum: int) -> bool:
    """
    Sends a signal through psutil, treating a vanished process as a no-op.

    :return: True if the signal was delivered, False if the process is gone or inaccessible.
    """
    try:
        proc.send_signal(signum)
        return True
    except psutil.NoSuchProcess:
        log.debug(f"Process {proc.pid} no longer exists, skipping signal {signum}.")
        return False
    except psutil.AccessDenied:
        log.warning(f"Access denied while sending signal {signum} to PID {proc.pid}.")
        return False


#* --- Output Relay ---
def _read_pipe(pipe, process_name: str, level: int):
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            proc_logger.log(level, line)
    except Exception as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()

def log_process_output(process: subprocess.Popen, name: str):
    """Starts background threads to consume and log a process's stdout/stderr."""
    if process.stdout:
        threading.Thread(target=_read_pipe, args=(process.stdout, name, logging.INFO), daemon=True, name=f"{name}-stdout").start()
    if process.stderr:
        threading.Thread(target=_read_pipe, args=(process.stderr, name, logging.ERROR), daemon=True, name=f"{name}-stderr").start()


#* --- Process Creation ---
def default_worker_args() -> List[str]:
    """
    Returns the command line that re-executes the current program as a worker.

    `sys.orig_argv` keeps interpreter options such as `-m package`, so a master
    started with `python -m app` spawns workers the same way.
    """
    orig_argv = getattr(sys, "orig_argv", None)
    if orig_argv:
        return [sys.executable] + list(orig_argv[1:])
    return [sys.executable] + sys.argv

@contextmanager
def control_signals_blocked() -> Iterator[None]:
    """
    Blocks SIGUSR1 and SIGUSR2 in the calling thread for the duration of the block.

    A child forked meanwhile inherits the mask across exec, so a restart/info
    signal relayed before the worker installed its handlers stays pending
    instead of killing it. The worker unblocks them in `install_os_handler`.
    """
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, CONTROL_SIGNALS)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)

def exit_process(code: int = 0) -> None:
    """
    Terminates the current process with `code`.

    From the main thread this raises SystemExit so `finally` blocks and atexit
    hooks run. From any other thread (e.g. the control message listener) the
    interpreter cannot be unwound, so logging is flushed and the process ends
    immediately.
    """
    if threading.current_thread() is threading.main_thread():
        sys.exit(code)
    logging.shutdown()
    os._exit(code)


class PopenBackend:
    """
    The OS side of the worker pool: spawns workers with subprocess.Popen,
    talks to them over stdin and observes them through psutil.
    """

    def __init__(self, args: Optional[List[str]] = None, cwd: Optional[str] = None) -> None:
        self.args = list(args) if args else default_worker_args()
        self.cwd = cwd
        self._popen: Dict[int, subprocess.Popen] = {}
        self._procs: Dict[int, psutil.Process] = {}
        self._online: Set[int] = set()

    def spawn(self, worker_id: int) -> int:
        """
        Launches one worker process.

        :param worker_id: The pool-assigned id, exported as RUNNABLE_WORKER_ID.
        :return: The PID of the new process.
        :raises OSError: If the process cannot be created.
        """
        env = os.environ.copy()
        env[WORKER_ID_ENV] = str(worker_id)
        name = f"worker-{worker_id}"
        log.debug(f"Starting process: {name} ({' '.join(self.args)})...")

        with control_signals_blocked():
            p = subprocess.Popen(
                self.args,
                stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                cwd=self.cwd, env=env,
                start_new_session=True,
            )
        log_process_output(p, name)
        self._popen[p.pid] = p
        try:
            self._procs[p.pid] = psutil.Process(p.pid)
        except psutil.NoSuchProcess:
            pass  # Exited already, poll() reports it.
        return p.pid

    def send_message(self, pid: int, message_type: str) -> bool:
        """Writes a control message to a worker's stdin. Returns False if the worker cannot receive it."""
        p = self._popen.get(pid)
        if p is None or p.stdin is None or p.stdin.closed:
            return False
        try:
            p.stdin.write(encode_message(message_type))
            p.stdin.flush()
            return True
        except (BrokenPipeError, OSError, ValueError) as e:
            log.debug(f"Could not send '{message_type}' to PID {pid}: {e}")
            return False

    def send_signal(self, pid: int, signum: int) -> bool:
        """Signals a tracked worker. Forgotten PIDs may have been reused, so they are never signalled."""
        proc = self._procs.get(pid)
        if proc is None:
            log.debug(f"PID {pid} is not a tracked worker, skipping signal {signum}.")
            return False
        return send_signal(proc, signum)

    def kill(self, pid: int) -> bool:
        return self.send_signal(pid, signal.SIGKILL)

    def poll(self) -> List[ProcessEvent]:
        """
        Collects online and exit notifications for the spawned workers.
        Exited workers are reaped and forgotten.
        """
        events: List[ProcessEvent] = []
        for pid, p in list(self._popen.items()):
            returncode = p.poll()
            if returncode is not None:
                self._forget(pid)
                if returncode < 0:
                    events.append(ProcessEvent(EXIT, pid, None, -returncode))
                else:
                    events.append(ProcessEvent(EXIT, pid, returncode, None))
            elif pid not in self._online and pid in self._procs:
                if _get_proc_status_string(self._procs[pid]) == "running":
                    self._online.add(pid)
                    events.append(ProcessEvent(ONLINE, pid))
        return events

    def _forget(self, pid: int) -> None:
        p = self._popen.pop(pid, None)
        self._procs.pop(pid, None)
        self._online.discard(pid)
        if p is not None and p.stdin is not None:
            try:
                p.stdin.close()
            except OSError:
                pass

    def exit(self, code: int = 0) -> None:
        exit_process(code)
