import json
import logging
import os
import socket
import time
from typing import Any

logger = logging.getLogger(__name__)


class UdpTelemetrySink:
    """Sends each event as one JSON datagram to a local observer."""

    def __init__(self, port: int, host: str = "127.0.0.1"):
        self.address = (host, int(port))
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def build_datagram(self, event_type: str, payload: dict[str, Any]) -> bytes:
        event = {
            "type": event_type,
            "timestamp": int(time.time() * 1000),
            "daemon_pid": os.getpid(),
            **payload,
        }
        return json.dumps(event, default=str).encode("utf-8")

    def __call__(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            self._sock.sendto(self.build_datagram(event_type, payload), self.address)
        except OSError as e:
            logger.debug(f"Dropped {event_type} event: {e}")

    def close(self) -> None:
        self._sock.close()
