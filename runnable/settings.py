"""
This module contains the default configuration settings for Runnable.
It defines the worker pool size, process titles, identity, timing of the
supervision loop and the logging backends.
Values can be overridden through the environment or a `.env` file.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=False)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("RUNNABLE_BASE_DIR", os.getcwd())).resolve()
OVERRIDES_JSON_PATH = BASE_DIR / os.getenv("RUNNABLE_OVERRIDES_FILE", "runnable.overrides.json")
# Optional, the control console needs it to find a running master.
PID_FILE_PATH = pathlib.Path(os.environ["RUNNABLE_PID_FILE"]) if os.getenv("RUNNABLE_PID_FILE") else None

#* --- Worker Pool Settings ---
DEFAULT_WORKERS_NUM = 1
WORKERS_NUM = int(os.getenv("RUNNABLE_WORKERS", "0")) or DEFAULT_WORKERS_NUM
WORKER_ID_ENV = "RUNNABLE_WORKER_ID"  # Set by the master on every worker it spawns

#* --- Process Attributes ---
MASTER_TITLE = os.getenv("RUNNABLE_MASTER_TITLE", "")
WORKER_TITLE = os.getenv("RUNNABLE_WORKER_TITLE", "")
RUN_UID = os.getenv("RUNNABLE_UID") or None  # numeric id or user name
RUN_GID = os.getenv("RUNNABLE_GID") or None  # numeric id or group name

#* --- Supervisor Settings ---
GRACEFUL_SHUTDOWN_TIMEOUT = 5.0   # seconds before force-killing a worker
SUPERVISOR_SLEEP_INTERVAL = 0.1   # seconds between supervision loop ticks

#* --- Logging ---
LOG_LEVEL = os.getenv("RUNNABLE_LOG_LEVEL", "INFO").upper()
VERBOSE_LOGGING = os.getenv("RUNNABLE_VERBOSE", "False").lower() in ('true', '1', 't')  # DEBUG on the console

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "")
LOG_BUFFER_FLUSH_INTERVAL = 10
LOG_BUFFER_BATCH_SIZE = 200

#* --- MODIFIABLE SETTINGS (Changeable through the overrides file) ---
MODIFIABLE_SETTINGS = {
    # Worker pool
    "WORKERS_NUM", "GRACEFUL_SHUTDOWN_TIMEOUT", "SUPERVISOR_SLEEP_INTERVAL",
    # Process attributes
    "MASTER_TITLE", "WORKER_TITLE",
    # Logging
    "LOG_LEVEL", "VERBOSE_LOGGING", "LOKI_ENABLED", "LOKI_URL", "LOKI_ORG_ID",
    "LOG_BUFFER_FLUSH_INTERVAL", "LOG_BUFFER_BATCH_SIZE",
}
