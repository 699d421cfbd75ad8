import sys
import logging
from typing import List, Optional

import runnable.local.console as console
from runnable.local.config import effective_settings as config
from runnable.local.role import ProcessRole
from runnable.log.setup import setup_logging

log = logging.getLogger("console")


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point of `runnablectl`."""
    args = list(sys.argv[1:] if argv is None else argv)

    if "--verbose" in args:
        args.remove("--verbose")
        config.VERBOSE_LOGGING = True
    setup_logging(role=ProcessRole.MASTER)

    if not args:
        console.print_help()
        return 1

    command, args = args[0].lower(), args[1:]
    try:
        return 0 if console.execute_command(command, args) else 1
    except KeyboardInterrupt:
        log.warning("Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
