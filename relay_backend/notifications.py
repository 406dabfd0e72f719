# notifications.py
"""
Fan-out of engine changes to connected observers.

The engine only knows the ``NotificationSink`` interface. Every message
carries the complete state, so observers that miss or reorder a message
catch up with the next one.
"""

import logging
from typing import Dict

from relay_backend.exceptions import NotificationError
from relay_backend.settings import AppSettings, settings_to_dict

SYSTEM_STATE_EVENT = "system_state"
CONFIGURATION_UPDATED_EVENT = "configuration_updated"


class NotificationSink:
    def state_changed(self, state: Dict[str, str]):
        raise NotImplementedError

    def settings_changed(self, settings: AppSettings):
        raise NotImplementedError


class NullNotifier(NotificationSink):
    """Used when nothing is listening, e.g. in command-line tools and tests."""

    def state_changed(self, state: Dict[str, str]):
        pass

    def settings_changed(self, settings: AppSettings):
        pass


class SocketIONotifier(NotificationSink):
    """
    Broadcasts to every Socket.IO client connected to the hub.
    Emit failures are raised as NotificationError.
    """

    def __init__(self, socketio):
        self.socketio = socketio
        self.logger = logging.getLogger("SocketIONotifier")

    def state_changed(self, state: Dict[str, str]):
        self.logger.debug(f"Broadcasting system state: {state}")
        self._emit(SYSTEM_STATE_EVENT, state)

    def settings_changed(self, settings: AppSettings):
        self.logger.info("Broadcasting updated configuration to clients.")
        self._emit(CONFIGURATION_UPDATED_EVENT, settings_to_dict(settings))

    def _emit(self, event: str, payload):
        try:
            self.socketio.emit(event, payload)
        except Exception as e:
            raise NotificationError(f"Unable to broadcast '{event}': {e}") from e
