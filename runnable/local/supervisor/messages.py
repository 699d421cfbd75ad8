"""
The master -> worker message protocol.

Messages are single JSON objects, one per line, written to the worker's stdin.
The only message type is `shutdown`, on which the worker exits immediately
with status 0.
"""
import json
import logging
import threading
from typing import IO, Any, Callable, Dict, Optional

log = logging.getLogger(__name__)

SHUTDOWN = "shutdown"
MESSAGE_TYPES = {SHUTDOWN}


def encode_message(message_type: str) -> bytes:
    """Encodes a message as a newline-terminated JSON line."""
    if message_type not in MESSAGE_TYPES:
        raise ValueError(f"Unknown message type '{message_type}'.")
    return json.dumps({"type": message_type}).encode("utf-8") + b"\n"


def decode_message(line: Any) -> Optional[Dict[str, Any]]:
    """
    Decodes one line received on the control channel.

    :param line: The raw line, bytes or str.
    :return: The message dict, or None if the line is blank, malformed or of an unknown type.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        return None
    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        log.warning(f"Ignoring malformed control message: {line[:200]!r}")
        return None
    if not isinstance(message, dict) or message.get("type") not in MESSAGE_TYPES:
        log.warning(f"Ignoring unknown control message: {line[:200]!r}")
        return None
    return message


class MessageListener:
    """
    Reads control messages from a stream in a daemon thread (worker side).

    `on_message` is called for each valid message. `on_disconnect` is called
    once the stream reaches EOF, which means the master went away.
    """

    def __init__(
        self,
        stream: IO,
        on_message: Callable[[Dict[str, Any]], None],
        on_disconnect: Optional[Callable[[], None]] = None,
    ) -> None:
        self.stream = stream
        self.on_message = on_message
        self.on_disconnect = on_disconnect
        self.thread: Optional[threading.Thread] = None

    def start(self) -> "MessageListener":
        self.thread = threading.Thread(target=self.listen, daemon=True, name="ControlMessageListener")
        self.thread.start()
        return self

    def listen(self) -> None:
        try:
            while True:
                line = self.stream.readline()
                if not line:
                    break
                message = decode_message(line)
                if message is not None:
                    self.on_message(message)
        except (OSError, ValueError) as e:
            log.debug(f"Control channel closed: {e}")
        if self.on_disconnect is not None:
            self.on_disconnect()
