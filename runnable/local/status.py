import os
import time
import json
import psutil
import logging
from typing import Any, Dict, Optional

from runnable.local.identity import current_title

log = logging.getLogger(__name__)


def collect_process_info(pid: Optional[int] = None) -> Dict[str, Any]:
    """
    Collects the diagnostic snapshot of a process.

    :param pid: The process to inspect, defaults to the current one.
    :return: A dict with 'pid', 'title', 'memory' (psutil memory_info fields, bytes) and 'uptime' (seconds).
    """
    pid = os.getpid() if pid is None else pid
    proc = psutil.Process(pid)
    with proc.oneshot():
        memory = proc.memory_info()._asdict()
        uptime = max(0.0, time.time() - proc.create_time())
    title = current_title() if pid == os.getpid() else proc.name()
    return {"pid": pid, "title": title, "memory": memory, "uptime": round(uptime, 3)}


def format_process_info(info: Dict[str, Any]) -> str:
    return (
        f"PID ({info['title']}): {info['pid']}"
        f": memory usage: {json.dumps(info['memory'])}"
        f"; uptime: {info['uptime']}"
    )


def report_process_info(logger: Optional[logging.Logger] = None) -> Dict[str, Any]:
    """Logs pid, memory usage and uptime of the current process and returns the snapshot."""
    info = collect_process_info()
    (logger or log).info(format_process_info(info))
    return info
