# validation.py
"""
Structural checks for a proposed configuration.

``validate`` never stops at the first problem: an operator editing the file
gets every violation in one pass. Nothing here touches the disk or GPIO.
"""

from typing import List, Optional, Tuple

from relay_backend.config import MAX_PIN, MIN_PIN
from relay_backend.exceptions import ValidationError, format_summary
from relay_backend.settings import VALID_LEVELS, AppSettings

MAX_PORT = 65535


def validate(settings: AppSettings) -> Tuple[bool, List[str]]:
    errors: List[str] = []

    _validate_routes(settings, errors)
    _validate_ports(settings, errors)
    _validate_default_source(settings, errors)
    _validate_default_routes(settings, errors)
    _validate_physical_buttons(settings, errors)
    _validate_inactive_relay(settings, errors)

    return len(errors) == 0, errors


def try_validate(settings: AppSettings) -> Tuple[bool, str]:
    """Same as validate, with the errors rendered as the operator-facing summary."""
    ok, errors = validate(settings)
    return ok, format_summary(errors)


def ensure_valid(settings: AppSettings) -> AppSettings:
    ok, errors = validate(settings)
    if not ok:
        raise ValidationError(errors)
    return settings


def _pin_error(pin: int, label: str) -> Optional[str]:
    if pin < MIN_PIN:
        return f"{label} has invalid pin '{pin}'. Pin must be greater than 0."
    if pin > MAX_PIN:
        return f"{label} has pin '{pin}' which exceeds maximum valid pin ({MAX_PIN})."
    return None


def _validate_routes(settings: AppSettings, errors: List[str]):
    if not settings.routes:
        errors.append("At least one route must be configured.")
        return

    seen = set()
    for route in settings.routes:
        source = (route.source_name or "").strip()
        output = (route.output_name or "").strip()
        if not source:
            errors.append("A route is missing a SourceName.")
        if not output:
            errors.append(f"Route for source '{source or '<unknown>'}' is missing an OutputName.")

        pin_error = _pin_error(route.relay_pin, f"Route {route.source_name}->{route.output_name}")
        if pin_error:
            errors.append(pin_error)

        if source and output:
            key = (route.source_name.lower(), route.output_name.lower())
            if key in seen:
                errors.append(f"Duplicate route detected for '{route.source_name}' -> '{route.output_name}'.")
            seen.add(key)


def _validate_port(value: Optional[int], name: str, errors: List[str]):
    if value is not None and not 1 <= value <= MAX_PORT:
        errors.append(f"{name} '{value}' must be between 1 and {MAX_PORT}.")


def _validate_ports(settings: AppSettings, errors: List[str]):
    _validate_port(settings.server_port, "ServerPort", errors)
    _validate_port(settings.tcp_mirror_port, "TcpMirrorPort", errors)
    _validate_port(settings.udp_api_port, "UdpApiPort", errors)

    if settings.tcp_mirror_address and settings.tcp_mirror_port is None:
        errors.append("TcpMirrorAddress is set but TcpMirrorPort is missing.")
    elif settings.tcp_mirror_port is not None and not settings.tcp_mirror_address:
        errors.append("TcpMirrorPort is set but TcpMirrorAddress is missing.")


def _validate_default_source(settings: AppSettings, errors: List[str]):
    if settings.default_source and settings.find_source(settings.default_source) is None:
        errors.append(f"DefaultSource references unknown source '{settings.default_source}'.")


def _validate_default_routes(settings: AppSettings, errors: List[str]):
    for source, output in settings.default_routes.items():
        if settings.find_source(source) is None:
            errors.append(f"Default route references unknown source '{source}'.")
            continue
        # An empty output leaves the source unrouted at startup
        if output and settings.find_route(source, output) is None:
            errors.append(f"Default route '{source}' -> '{output}' does not match any configured route.")


def _validate_physical_buttons(settings: AppSettings, errors: List[str]):
    for source, button in settings.physical_source_buttons.items():
        if settings.find_source(source) is None:
            errors.append(f"Physical button configured for unknown source '{source}'.")
            continue

        pin_error = _pin_error(button.pin_number, f"Physical button for source '{source}'")
        if pin_error:
            errors.append(pin_error)

        if button.trigger_state not in VALID_LEVELS:
            errors.append(
                f"Physical button for source '{source}' has TriggerState '{button.trigger_state}'; "
                f"it must be either \"High\" or \"Low\"."
            )


def _validate_inactive_relay(settings: AppSettings, errors: List[str]):
    relay = settings.inactive_relay
    if relay is None:
        return

    pin_error = _pin_error(relay.pin, "Inactive relay")
    if pin_error:
        errors.append(pin_error)

    if relay.inactive_state not in VALID_LEVELS:
        errors.append(f"Inactive relay InactiveState '{relay.inactive_state}' must be either \"High\" or \"Low\".")
