# services/configuration_service.py

import logging
import os
from typing import Optional, Tuple

from relay_backend.settings import AppSettings, dump_settings
from relay_backend.validation import try_validate


class ConfigurationService:
    """
    Operator-facing save path for the configuration file.
    Validates before writing so the file on disk is always loadable.
    """
    def __init__(self, config_path: str):
        self.config_path = config_path
        self.logger = logging.getLogger("ConfigurationService")

    def save(self, settings: AppSettings) -> Tuple[bool, Optional[str]]:
        """
        :return: (True, None) when written, otherwise (False, error text). For an
                 invalid configuration the error text lists every violation.
        """
        ok, summary = try_validate(settings)
        if not ok:
            self.logger.warning(f"Refusing to save invalid configuration.\n{summary}")
            return False, summary

        tmp_path = f"{self.config_path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(dump_settings(settings))
            # The watcher must never see a partially written file
            os.replace(tmp_path, self.config_path)
        except OSError as e:
            self.logger.error(f"Error saving configuration to {self.config_path}: {e}")
            return False, f"Failed to write configuration file: {e}"

        self.logger.info(f"Configuration saved to {self.config_path}")
        return True, None
