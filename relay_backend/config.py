# config.py

import os


def _env_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    return default if val is None or val == "" else float(val)


def _env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    return default if val is None or val == "" else int(val)


# Network configuration for the hub
SERVER_HOST = os.getenv("RELAY_SERVER_HOST", "0.0.0.0")  # Listen on all network interfaces
DEFAULT_SERVER_PORT = 5000

# Relay/route description, hot-reloaded while the server runs
CONFIG_PATH = os.getenv("RELAY_CONFIG_PATH", "config.json")

# --- Logging ---
LOG_DIR = os.getenv("RELAY_LOG_DIR", "logs")
LOG_NAME_PREFIX = "relay"
LOG_MAX_FILES = _env_int("RELAY_LOG_MAX_FILES", 5)
LOG_LEVEL = os.getenv("RELAY_LOG_LEVEL", "INFO")

# --- GPIO ---
# gpiochip used by the lgpio pin factory (0 on Pi 1-4, 4 on early Pi 5 kernels)
GPIO_CHIP = _env_int("RELAY_GPIO_CHIP", 0)
# Forces the in-memory driver even if the config file asks for real hardware
FORCE_MOCK_GPIO = _env_bool("RELAY_FORCE_MOCK_GPIO", False)
# Valid header pin range for relays, buttons and the inactive relay
MIN_PIN = 1
MAX_PIN = 40

# Mechanical buttons bounce; repeat edges on one pin inside this window are dropped
BUTTON_DEBOUNCE_SECONDS = _env_float("RELAY_BUTTON_DEBOUNCE_SECONDS", 0.2)

# --- Configuration file watcher ---
CONFIG_POLL_INTERVAL_SECONDS = _env_float("RELAY_CONFIG_POLL_INTERVAL_SECONDS", 1.0)
CONFIG_RELOAD_DEBOUNCE_SECONDS = _env_float("RELAY_CONFIG_RELOAD_DEBOUNCE_SECONDS", 0.3)
CONFIG_READ_RETRIES = _env_int("RELAY_CONFIG_READ_RETRIES", 5)
CONFIG_READ_RETRY_DELAY_SECONDS = _env_float("RELAY_CONFIG_READ_RETRY_DELAY_SECONDS", 0.2)

# TCP mirror messages are fire-and-forget with a short connect/write timeout
TCP_MIRROR_TIMEOUT_SECONDS = _env_float("RELAY_TCP_MIRROR_TIMEOUT_SECONDS", 2.0)

# Largest UDP datagram the control listener accepts
UDP_BUFFER_SIZE = 1024

# Advertise the hub over mDNS as _remoterelay._tcp.local.
MDNS_ENABLED = _env_bool("RELAY_MDNS_ENABLED", True)
