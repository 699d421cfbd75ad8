import os
import sys
import socket
import logging
import requests
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from runnable.local.config import effective_settings as config


class LokiHandler(logging.Handler):
    """
    Ships log records of the master, including the relayed worker output,
    to Grafana Loki. Records are buffered and pushed in batches, either when
    the buffer is full or periodically from a background thread.
    """
    def __init__(self, url: str, org_id: Optional[str] = None, role: str = "master",
                 flush_interval: Optional[float] = None, batch_size: Optional[int] = None):
        """
        :param url: Base URL of the Loki server, without the push path.
        :param org_id: Tenant sent as the X-Scope-OrgID header, if any.
        :param role: The process role, attached to every stream as a label.
        :param flush_interval: Seconds between background flushes.
        :param batch_size: Buffered records that trigger an immediate flush.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.role = role
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL if flush_interval is None else flush_interval
        self.batch_size = config.LOG_BUFFER_BATCH_SIZE if batch_size is None else batch_size
        self.hostname = os.getenv('HOSTNAME') or socket.gethostname() or 'unknown-host'

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True, name="LokiFlushThread")
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        """
        Flush loop of the background thread. It ends with one last flush
        once close() sets the stop event.
        """
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        self.flush()

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Turns a log record into a Loki stream entry."""
        # For worker output, the message is already the full line.
        if record.name.startswith('proc.'):
            msg = record.getMessage()
            logger_name = record.name.split('.')[-1]
        else:
            msg = self.format(record)
            logger_name = record.name

        return {
            "stream": {
                "job": "runnable",
                "role": self.role,
                "level": record.levelname.lower(),
                "hostname": self.hostname,
                "logger": logger_name,
            },
            "values": [
                [str(int(record.created * 1e9)), msg]
            ]
        }

    def emit(self, record: logging.LogRecord) -> None:
        """
        Buffers one record. A full batch is pushed right away from the
        calling thread.
        """
        try:
            entry = self.build_entry(record)
        except Exception:
            self.handleError(record)
            return

        with self.buffer_lock:
            self.log_buffer.append(entry)
            full = len(self.log_buffer) >= self.batch_size
        if full:
            self.flush()

    def _take_buffer(self) -> List[Dict[str, Any]]:
        with self.buffer_lock:
            entries = list(self.log_buffer)
            self.log_buffer.clear()
        return entries

    def flush(self) -> None:
        """
        Sends the buffered logs to Loki. The network call happens outside the buffer lock.
        """
        streams = self._take_buffer()
        if not streams:
            return

        headers = {'Content-Type': 'application/json'}
        if self.org_id:
            headers['X-Scope-OrgID'] = self.org_id
        try:
            response = requests.post(self.url, json={"streams": streams}, headers=headers, timeout=5)
            # Loki answers a successful push with 204
            if response.status_code != 204:
                print(f"ERROR: Loki returned non-204 status: {response.status_code} - {response.text}", file=sys.stderr)
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(streams)} logs to Loki: {e}", file=sys.stderr)

    def close(self) -> None:
        """
        Shuts down the handler, ensuring all buffered logs are flushed and the flush thread is joined.
        """
        self.stop_event.set()
        if self.flush_thread.is_alive() and self.flush_thread is not threading.current_thread():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        super().close()
