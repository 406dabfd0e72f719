# config_watcher.py

import logging
import os
import threading
import time
from typing import Optional, Tuple

from relay_backend.config import (CONFIG_POLL_INTERVAL_SECONDS,
                                  CONFIG_READ_RETRIES,
                                  CONFIG_READ_RETRY_DELAY_SECONDS,
                                  CONFIG_RELOAD_DEBOUNCE_SECONDS)
from relay_backend.exceptions import ConfigurationError, TransientIOError
from relay_backend.settings import AppSettings, load_settings
from relay_backend.validation import try_validate

FileSignature = Optional[Tuple[float, int]]


class ConfigurationWatcher:
    """
    Polls the configuration file and hot-reloads the switcher when it changes.

    Editors write files in several steps, so a change is only acted on once
    the file has stopped changing for the debounce delay. A reload that fails
    to read, parse or validate is logged and the running configuration stays.
    """
    def __init__(self, config_path: str, switcher_state,
                 poll_interval: float = CONFIG_POLL_INTERVAL_SECONDS,
                 debounce_seconds: float = CONFIG_RELOAD_DEBOUNCE_SECONDS,
                 read_retries: int = CONFIG_READ_RETRIES,
                 retry_delay: float = CONFIG_READ_RETRY_DELAY_SECONDS,
                 sleep=time.sleep):
        self.logger = logging.getLogger("ConfigurationWatcher")
        self.config_path = config_path
        self.switcher_state = switcher_state
        self.poll_interval = poll_interval
        self.debounce_seconds = debounce_seconds
        self.read_retries = read_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

        self.reload_lock = threading.Lock()
        self.stop_event = threading.Event()
        self.worker_thread: Optional[threading.Thread] = None
        self._signature: FileSignature = None

    # --- Background polling ---

    def start(self):
        if self.worker_thread is not None and self.worker_thread.is_alive():
            return
        self._signature = self._current_signature()
        self.stop_event.clear()
        self.worker_thread = threading.Thread(target=self._watch_worker, name="config-watcher", daemon=True)
        self.worker_thread.start()
        self.logger.info(f"Watching configuration file at {self.config_path}")

    def stop(self):
        self.stop_event.set()
        if self.worker_thread is not None and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=2)
        self.worker_thread = None

    def _current_signature(self) -> FileSignature:
        try:
            stat = os.stat(self.config_path)
        except OSError:
            return None
        return stat.st_mtime, stat.st_size

    def poll_once(self) -> bool:
        """
        Checks the file once. Returns True if a change was detected and a reload attempted.
        """
        signature = self._current_signature()
        if signature == self._signature:
            return False

        # Wait until successive writes settle
        while True:
            self.sleep(self.debounce_seconds)
            settled = self._current_signature()
            if settled == signature:
                break
            signature = settled
        self._signature = signature

        if signature is None:
            self.logger.warning(f"Configuration file {self.config_path} disappeared; keeping current configuration.")
            return False

        self.reload()
        return True

    def _watch_worker(self):
        while not self.stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                self.logger.error(f"Failed to reload configuration file: {e}")
            self.stop_event.wait(self.poll_interval)

    # --- Reloading ---

    def read_settings(self) -> Optional[AppSettings]:
        """
        Reads, parses and validates the file, retrying transient I/O errors.
        Returns None when the file must be ignored.
        """
        for attempt in range(1, self.read_retries + 1):
            try:
                settings = load_settings(self.config_path)
            except OSError as e:
                if attempt < self.read_retries:
                    self.logger.debug(f"Configuration read attempt {attempt} failed: {e}")
                    self.sleep(self.retry_delay)
                    continue
                error = TransientIOError(f"Unable to read configuration file after {self.read_retries} attempts: {e}")
                self.logger.error(str(error))
                return None
            except ConfigurationError as e:
                self.logger.warning(f"Configuration file is invalid: {e}")
                return None

            ok, summary = try_validate(settings)
            if not ok:
                self.logger.warning(summary)
                return None
            return settings
        return None

    def reload(self) -> bool:
        """Applies the file's settings to the switcher; the running ones stay on any failure."""
        with self.reload_lock:
            settings = self.read_settings()
            if settings is None:
                return False

            current = self.switcher_state.get_settings()
            if current is not None:
                if settings.server_port != current.server_port:
                    self.logger.warning(
                        f"ServerPort change detected in configuration file. Restart the server to apply the new port. "
                        f"The running instance will continue using port {current.server_port}."
                    )
                    settings = settings.with_server_port(current.server_port)
                if settings == current:
                    self.logger.info("Configuration file changed but settings are identical; nothing to apply.")
                    return True

            ok, error = self.switcher_state.apply_settings(settings)
            if ok:
                self.logger.info("Configuration reload completed successfully.")
            else:
                self.logger.error(f"Configuration reload failed: {error}")
            return ok
