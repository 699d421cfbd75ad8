import logging
import sys
from typing import Optional, Union

from runnable.local.config import effective_settings as config
from runnable.local.role import ProcessRole, resolve_role
from runnable.log.handler import LokiHandler

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [{role} %(process)d] [%(name)s] - %(message)s'


class MainFormatter(logging.Formatter):
    """
    A custom formatter to handle regular logs and raw worker output.

    Lines relayed from a worker's stdout/stderr (loggers named 'proc.*') are
    already formatted by the worker, so they are passed through unchanged.
    """

    def __init__(self, role: ProcessRole) -> None:
        super().__init__(LOG_FORMAT.format(role=role.value))

    def format(self, record: logging.LogRecord) -> str:
        if record.name.startswith('proc.'):
            return record.getMessage()
        return super().format(record)


def setup_logging(console_level: Optional[Union[int, str]] = None, role: Optional[ProcessRole] = None) -> None:
    """
    Configures the root logger for the current process.
    This sets up the console handler and optionally Loki, clearing any
    previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output, defaults to LOG_LEVEL.
    :param role: The role shown in every line, resolved from the environment if omitted.
    """
    role = role or resolve_role()
    if console_level is None:
        console_level = logging.DEBUG if config.VERBOSE_LOGGING else config.LOG_LEVEL

    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter(role))
    root_logger.addHandler(console_handler)

    # --- Loki Handler (conditional) ---
    # Workers already reach Loki through the master's relay of their output.
    if config.LOKI_ENABLED and role is ProcessRole.MASTER:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID, role=role.value)
            loki_handler.setLevel(logging.INFO) # Avoid spamming Loki with DEBUG logs
            loki_handler.setFormatter(MainFormatter(role))
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
