import logging
from typing import List

from runnable.local.console.handler import COMMAND_SIGNALS, display_status, print_help, resolve_master_pid, signal_master

log = logging.getLogger(__name__)


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'stop', 'status').
    :param args: A list of arguments for the command.
    :return bool: True if the command succeeded, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")

    if command == "help":
        print_help()
        return True

    if command not in COMMAND_SIGNALS and command != "status":
        print(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False

    pid = resolve_master_pid(args)
    if pid is None:
        return False

    if command == "status":
        return display_status(pid)
    return signal_master(command, pid)
