import json
import logging
from pathlib import Path
from typing import Dict, Optional

log = logging.getLogger(__name__)


def get_pid_info(pid_file_path: Path) -> Optional[Dict[str, int]]:
    """
    Reads the PID file from disk and returns its contents.

    :param pid_file_path: Location of the PID file.
    :return: A dictionary of PIDs if the file exists and is valid, else None.
    """
    if not pid_file_path.exists():
        return None
    try:
        with pid_file_path.open("r") as f:
            pids = json.load(f)
        if not isinstance(pids, dict) or not isinstance(pids.get("master"), int):
            log.error(f"PID file '{pid_file_path}' is malformed. Deleting.")
            pid_file_path.unlink(missing_ok=True)
            return None
        return pids
    except (json.JSONDecodeError, IOError):
        log.warning("Could not read PID file, assuming stale.")
        pid_file_path.unlink(missing_ok=True)
        return None

def get_master_pid(pid_file_path: Path) -> Optional[int]:
    pid_info = get_pid_info(pid_file_path)
    return pid_info["master"] if pid_info else None

def write_pid_file(pid_file_path: Path, master_pid: int) -> None:
    """
    Atomically writes the master PID to the PID file.

    :param pid_file_path: Location of the PID file.
    :param master_pid: The PID of the master process.
    """
    temp_pid_path = pid_file_path.with_suffix(".tmp")
    try:
        pid_file_path.parent.mkdir(parents=True, exist_ok=True)
        with temp_pid_path.open("w") as f:
            json.dump({"master": master_pid}, f, indent=4)
        temp_pid_path.replace(pid_file_path)
    except (IOError, OSError) as e:
        log.error(f"Failed to write PID file: {e}", exc_info=True)
    finally:
        temp_pid_path.unlink(missing_ok=True)

def remove_pid_file(pid_file_path: Path) -> None:
    pid_file_path.unlink(missing_ok=True)
    log.debug(f"Removed PID file '{pid_file_path}'.")
