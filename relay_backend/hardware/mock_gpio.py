# hardware/mock_gpio.py
import logging
import threading
from typing import Dict, Optional

from relay_backend.exceptions import HardwareAcquisitionError
from relay_backend.hardware.gpio import (FALLING, HIGH, LOW, RISING,
                                         EdgeCallback, GpioDriver, level_name)


class MockGpioDriver(GpioDriver):
    """
    An in-memory driver that mimics the interface of the real GPIO driver.
    Pin levels survive close/reopen, like a relay board that keeps its state.
    Button presses can be simulated with simulate_edge().
    """
    def __init__(self, pin_count: int = 40, fail_on_open: Optional[set] = None):
        self.logger = logging.getLogger("MockGpioDriver")
        self.logger.info("--- INITIALIZING MOCK GPIO DRIVER ---")
        self.pin_count = pin_count
        # Pins listed here refuse to open, to exercise acquisition failures
        self.fail_on_open = set(fail_on_open or ())
        self.state_lock = threading.Lock()
        self.levels: Dict[int, int] = {}
        self.modes: Dict[int, str] = {}
        self.callbacks: Dict[int, EdgeCallback] = {}
        self.open_count: Dict[int, int] = {}
        self.close_count: Dict[int, int] = {}
        self.write_log = []

    def _claim(self, pin: int, mode: str):
        if pin in self.fail_on_open:
            raise HardwareAcquisitionError(pin, "simulated claim failure")
        if pin < 1 or pin > self.pin_count:
            raise HardwareAcquisitionError(pin, f"pin outside 1..{self.pin_count}")
        if pin in self.modes:
            raise HardwareAcquisitionError(pin, "line is already open")
        self.modes[pin] = mode
        self.open_count[pin] = self.open_count.get(pin, 0) + 1

    def open_output(self, pin: int, initial_level: int):
        with self.state_lock:
            self._claim(pin, "output")
            self.levels[pin] = initial_level
        self.logger.info(f"MOCK: Opened pin {pin} as output ({level_name(initial_level)})")

    def open_input(self, pin: int, pull_up: bool):
        with self.state_lock:
            self._claim(pin, "input")
            self.levels[pin] = HIGH if pull_up else LOW
        self.logger.info(f"MOCK: Opened pin {pin} as input (pull {'up' if pull_up else 'down'})")

    def is_open(self, pin: int) -> bool:
        with self.state_lock:
            return pin in self.modes

    def read(self, pin: int) -> int:
        with self.state_lock:
            # Unwritten lines read High, the idle level of active-low relay boards
            return self.levels.get(pin, HIGH)

    def write(self, pin: int, level: int):
        with self.state_lock:
            if self.modes.get(pin) != "output":
                raise KeyError(f"GPIO {pin} is not open as an output")
            self.levels[pin] = level
            self.write_log.append((pin, level))
        self.logger.debug(f"MOCK: Write {level_name(level)} to pin {pin}")

    def on_edge(self, pin: int, callback: EdgeCallback):
        with self.state_lock:
            if self.modes.get(pin) != "input":
                raise KeyError(f"GPIO {pin} is not open as an input")
            self.callbacks[pin] = callback
        self.logger.info(f"MOCK: Edge callback registered on pin {pin}")

    def remove_edge_callback(self, pin: int):
        with self.state_lock:
            self.callbacks.pop(pin, None)

    def close(self, pin: int):
        with self.state_lock:
            if self.modes.pop(pin, None) is None:
                return
            self.callbacks.pop(pin, None)
            self.close_count[pin] = self.close_count.get(pin, 0) + 1
        self.logger.info(f"MOCK: Closed pin {pin}")

    def close_all(self):
        for pin in list(self.modes):
            self.close(pin)

    # --- Simulation helpers ---

    def simulate_edge(self, pin: int, edge: str):
        """Drives an input line and fires its callback on the calling thread."""
        with self.state_lock:
            self.levels[pin] = HIGH if edge == RISING else LOW
            callback = self.callbacks.get(pin)
        if callback is None:
            self.logger.warning(f"MOCK: Edge on pin {pin} with no callback registered")
            return
        callback(pin, edge)

    def simulate_press(self, pin: int, trigger_low: bool = True):
        self.simulate_edge(pin, FALLING if trigger_low else RISING)

    @property
    def open_pins(self):
        with self.state_lock:
            return set(self.modes)
