# exceptions.py

from typing import List, Optional


class RelayError(Exception):
    """Base class for every error raised by the relay backend."""


class ValidationError(RelayError):
    """
    A proposed configuration broke one or more structural rules.
    Carries every violation, never just the first one.
    """
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(format_summary(self.errors))

    @property
    def summary(self) -> str:
        return format_summary(self.errors)


class ConfigurationError(RelayError):
    """The configuration file could not be parsed into settings at all."""


class HardwareAcquisitionError(RelayError):
    """A GPIO line could not be opened or claimed."""
    def __init__(self, pin: Optional[int], reason: str):
        self.pin = pin
        self.reason = reason
        if pin is None:
            super().__init__(reason)
        else:
            super().__init__(f"GPIO {pin}: {reason}")


class TransientIOError(RelayError):
    """The configuration file stayed unreadable after every retry."""


class NotificationError(RelayError):
    """A mirror message or broadcast could not be delivered."""


def format_summary(errors: List[str]) -> str:
    if not errors:
        return ""
    lines = ["Configuration validation failed:"]
    lines.extend(f" - {error}" for error in errors)
    return "\n".join(lines) + "\n"
