# services/tcp_mirror.py

import logging
import socket

from relay_backend.config import TCP_MIRROR_TIMEOUT_SECONDS
from relay_backend.exceptions import NotificationError


class TcpMessageService:
    """
    Sends the free-text message of a route to an external TCP listener when
    that route is switched on. Fire-and-forget: failures are logged, never raised,
    and never retried.
    """
    def __init__(self, timeout: float = TCP_MIRROR_TIMEOUT_SECONDS):
        self.timeout = timeout
        self.logger = logging.getLogger("TcpMessageService")

    def send_message(self, host: str, port: int, message: str) -> bool:
        """
        :param host: The target host address.
        :param port: The target port.
        :param message: The message to send, UTF-8 encoded on the wire.
        :return: True if the message was written.
        """
        try:
            self.deliver(host, port, message)
        except NotificationError as e:
            self.logger.warning(str(e))
            return False
        self.logger.info(f"TCP message sent to {host}:{port}: {message}")
        return True

    def deliver(self, host: str, port: int, message: str):
        """
        :raises NotificationError: if the listener cannot be reached or the write fails.
        """
        try:
            self.logger.debug(f"Connecting to TCP endpoint {host}:{port}")
            with socket.create_connection((host, port), timeout=self.timeout) as conn:
                conn.settimeout(self.timeout)
                conn.sendall(message.encode("utf-8"))
        except socket.timeout as e:
            raise NotificationError(f"TCP connection to {host}:{port} timed out") from e
        except OSError as e:
            raise NotificationError(f"TCP socket error connecting to {host}:{port}: {e}") from e
