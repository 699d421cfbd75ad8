import os
import signal
import psutil
import logging
from pathlib import Path
from typing import List, Optional

from runnable.local.config import effective_settings as config
from runnable.local.supervisor.persistence import get_master_pid
from runnable.local.supervisor.signals import EVENT_INFO, EVENT_RESTART, EVENT_STOP

log = logging.getLogger(__name__)

COMMAND_SIGNALS = {
    "stop": getattr(signal, EVENT_STOP),
    "restart": getattr(signal, EVENT_RESTART),
    "info": getattr(signal, EVENT_INFO),
}


def resolve_master_pid(args: List[str], pid_file_path: Optional[Path] = None) -> Optional[int]:
    """
    Finds the PID of the master to talk to.

    :param args: The command arguments; the first one, if any, is the PID.
    :param pid_file_path: The PID file to fall back to, defaults to PID_FILE_PATH.
    :return: The master PID, or None when neither source provides one.
    """
    if args:
        try:
            return int(args[0])
        except ValueError:
            print(f"Invalid PID: '{args[0]}'.")
            return None

    pid_file_path = pid_file_path or config.PID_FILE_PATH
    if not pid_file_path:
        print("No PID given and RUNNABLE_PID_FILE is not set.")
        return None
    pid = get_master_pid(Path(pid_file_path))
    if pid is None:
        print(f"No master PID found in '{pid_file_path}'. Is the application running?")
    return pid

def signal_master(command: str, pid: int) -> bool:
    """
    Sends the control signal for `command` to the master process.

    :param command: One of 'stop', 'restart' or 'info'.
    :param pid: The PID of the master.
    :return: True if the signal was delivered.
    """
    signum = COMMAND_SIGNALS[command]
    try:
        psutil.Process(pid).send_signal(signum)
    except psutil.NoSuchProcess:
        print(f"No process with PID {pid}. Is the application running?")
        return False
    except psutil.AccessDenied:
        print(f"Not allowed to signal PID {pid}.")
        return False

    log.info(f"Sent {signal.Signals(signum).name} ({command}) to master PID {pid}.")
    return True

def _describe(p: psutil.Process, label: str) -> str:
    with p.oneshot():
        cpu = p.cpu_percent(interval=0.1)
        mem = p.memory_info().rss
        return f"  - {label:<12} : PID {p.pid:<8} | Status: {p.status().upper()} | CPU: {cpu:.1f}% | MEM: {mem/1024/1024:.1f} MB"

def display_status(pid: int) -> bool:
    """Checks and displays the master and its workers, including resource usage."""
    try:
        master = psutil.Process(pid)
        children = master.children()
    except psutil.NoSuchProcess:
        print(f"\nApplication is STOPPED (no process with PID {pid}).\n")
        return False

    print("\n--- Application Status ---")
    try:
        print(_describe(master, "master"))
    except psutil.NoSuchProcess:
        print(f"  - {'master':<12} : PID {pid:<8} | Status: STOPPED")
        return False

    for child in children:
        try:
            worker_id = child.environ().get(config.WORKER_ID_ENV, "?")
        except (psutil.AccessDenied, psutil.NoSuchProcess):
            worker_id = "?"
        try:
            print(_describe(child, f"worker-{worker_id}"))
        except psutil.NoSuchProcess:
            print(f"  - {'worker-' + str(worker_id):<12} : PID {child.pid:<8} | Status: EXITED")
        except psutil.AccessDenied:
            print(f"  - {'worker-' + str(worker_id):<12} : PID {child.pid:<8} | Status: RUNNING (Access Denied)")

    print(f"\nWorkers: {len(children)}")
    print("-" * 26 + "\n")
    return True

def print_help() -> None:
    """Prints the help text of the control console."""
    print("\nUsage: runnablectl <command> [pid]")
    print("\nAvailable commands:")
    print("  stop [pid]     - Stop the master and its workers gracefully (SIGTERM).")
    print("  restart [pid]  - Replace all workers with fresh ones (SIGUSR1).")
    print("  info [pid]     - Log pid, memory usage and uptime of every process (SIGUSR2).")
    print("  status [pid]   - Show the master and its workers with resource usage.")
    print("  help           - Show this help message.")
    print("\nWithout a pid, the master is looked up in the file named by RUNNABLE_PID_FILE.")
    print("Add --verbose for DEBUG output.")
    print()
