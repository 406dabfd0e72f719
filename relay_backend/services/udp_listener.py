# services/udp_listener.py

import logging
import socket
import threading
from typing import List, Optional, Tuple

from relay_backend.config import UDP_BUFFER_SIZE
from relay_backend.settings import AppSettings

COMMAND_PREFIX = "SWITCH "


def _find_matching_name(text: str, candidates: List[str]) -> Optional[str]:
    lowered = text.lower()
    for candidate in candidates:
        if lowered.startswith(candidate.lower()):
            return candidate
    for candidate in candidates:
        if candidate.lower() in lowered:
            return candidate
    return None


def parse_switch_command(message: str, settings: AppSettings) -> Optional[Tuple[str, str]]:
    """
    Parses 'SWITCH <input> <output>'.
    Input and output are either 1-based indices into the source/output lists
    or names, e.g. "SWITCH 1 2" or "SWITCH Mic 1 Studio".
    Returns the canonical (source, output) pair of an existing route, or None.
    """
    logger = logging.getLogger("UdpListenerService")
    if not message.upper().startswith(COMMAND_PREFIX):
        logger.warning("Invalid UDP command format. Expected: SWITCH <input> <output>")
        return None

    sources = settings.sources
    outputs = settings.outputs
    parts = message[len(COMMAND_PREFIX):].strip()
    tokens = parts.split()

    source_name = None
    output_name = None
    if len(tokens) == 2 and tokens[0].isdigit() and tokens[1].isdigit():
        source_index, output_index = int(tokens[0]), int(tokens[1])
        if 1 <= source_index <= len(sources):
            source_name = sources[source_index - 1]
        if 1 <= output_index <= len(outputs):
            output_name = outputs[output_index - 1]
    else:
        source_name = _find_matching_name(parts, sources)
        if source_name is not None:
            start = parts.lower().find(source_name.lower()) + len(source_name)
            output_name = _find_matching_name(parts[start:].strip(), outputs)

    if not source_name:
        logger.warning(f"UDP command: could not parse input from '{message}'")
        return None
    if not output_name:
        logger.warning(f"UDP command: could not parse output from '{message}'")
        return None

    route = settings.find_route(source_name, output_name)
    if route is None:
        logger.warning(f"UDP command: route '{source_name}' -> '{output_name}' does not exist")
        return None
    return route.source_name, route.output_name


class UdpListenerService:
    """
    Accepts switch commands from external automation over UDP.
    The switcher broadcasts the resulting state itself.
    """
    def __init__(self, switcher_state, port: int, host: str = "0.0.0.0"):
        self.logger = logging.getLogger("UdpListenerService")
        self.switcher_state = switcher_state
        self.host = host
        self.port = port
        self.sock: Optional[socket.socket] = None
        self.stop_event = threading.Event()

    def handle_message(self, message: str) -> bool:
        settings = self.switcher_state.get_settings()
        if settings is None:
            return False
        parsed = parse_switch_command(message, settings)
        if parsed is None:
            return False
        source_name, output_name = parsed
        switched = self.switcher_state.switch_source(source_name, output_name)
        if switched:
            self.logger.info(f"UDP switch executed: {source_name} -> {output_name}")
        return switched

    def serve_forever(self):
        """Blocking receive loop; run it as a background task."""
        self.logger.info(f"UDP listener starting on port {self.port}")
        try:
            self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.sock.bind((self.host, self.port))
            self.sock.settimeout(1.0)
        except OSError as e:
            self.logger.error(f"Failed to start UDP listener on port {self.port}: {e}")
            return

        self.logger.info(f"UDP listener ready on port {self.port}")
        try:
            while not self.stop_event.is_set():
                try:
                    data, remote = self.sock.recvfrom(UDP_BUFFER_SIZE)
                except socket.timeout:
                    continue
                except OSError as e:
                    if self.stop_event.is_set():
                        break
                    self.logger.error(f"Error receiving UDP message: {e}")
                    continue

                message = data.decode("utf-8", errors="replace").strip()
                self.logger.info(f"UDP received from {remote[0]}:{remote[1]}: {message}")
                try:
                    self.handle_message(message)
                except Exception as e:
                    self.logger.error(f"Error handling UDP message '{message}': {e}")
        finally:
            self.sock.close()
            self.logger.info("UDP listener stopped")

    def stop(self):
        self.stop_event.set()
