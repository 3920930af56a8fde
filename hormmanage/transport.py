"""Transport-layer interfaces and options."""

from __future__ import annotations

import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass

from hormmanage.message import Message


class Handler(ABC):
    """Processes one received request and returns the response bytes."""

    @abstractmethod
    def handle(self, msg: Message, req: bytes) -> bytes:
        """Handle ``req`` for the request described by ``msg``."""


@dataclass
class TransportOptions:
    """Options a transport is started with."""

    service_name: str = ""
    protocol: str = ""
    address: str = ""
    network: str = "tcp"
    handler: Handler | None = None
    listener: socket.socket | None = None

    event_loop_num: int = 0
    idle_timeout: float = 0.0  # seconds
    keep_alive_period: float = 0.0  # seconds
    enable_h2c: bool = False

    ca_cert_file: str = ""
    tls_cert_file: str = ""
    tls_key_file: str = ""