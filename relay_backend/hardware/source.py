# hardware/source.py

import logging
from typing import Dict, List, Tuple

from relay_backend.hardware.gpio import GpioDriver, level_name
from relay_backend.settings import RouteConfig


class Source:
    """
    Owns the relay lines of one input: one pin per output it can reach.
    At most one of them is ever at its active level.

    Not thread-safe on its own; SwitcherState calls it under its lock.
    """
    def __init__(self, name: str, driver: GpioDriver):
        self.name = name
        self.driver = driver
        self.logger = logging.getLogger("Source")
        # output name -> route, in configuration order
        self.outputs: Dict[str, RouteConfig] = {}

    def add_output_pin(self, route: RouteConfig):
        """
        Claims the relay pin for an output, starting at its inactive level.
        :raises HardwareAcquisitionError: if the line cannot be opened.
        """
        self.driver.open_output(route.relay_pin, route.inactive_level)
        self.outputs[route.output_name] = route
        self.logger.debug(
            f"  - Configured GPIO {route.relay_pin} for '{self.name}' -> '{route.output_name}'"
            f" (active {level_name(route.active_level)})"
        )

    def has_output(self, output_name: str) -> bool:
        return output_name in self.outputs

    def _plan(self, active_output: str) -> List[Tuple[int, int]]:
        # Inactive writes first so two relays are never on at the same time
        inactive = [(r.relay_pin, r.inactive_level) for name, r in self.outputs.items() if name != active_output]
        active = [(r.relay_pin, r.active_level) for name, r in self.outputs.items() if name == active_output]
        return inactive + active

    def enable_output(self, output_name: str) -> bool:
        """
        Routes this source to one output and releases every other one.
        Unknown outputs are ignored; returns whether anything was written.
        """
        if output_name not in self.outputs:
            self.logger.debug(f"Source '{self.name}' has no route to '{output_name}', ignoring.")
            return False
        for pin, level in self._plan(output_name):
            self.driver.write(pin, level)
        self.logger.info(f"Source '{self.name}' routed to '{output_name}'")
        return True

    def disable_output(self):
        for route in self.outputs.values():
            self.driver.write(route.relay_pin, route.inactive_level)

    def current_route(self) -> str:
        """Output whose pin reads its active level, or '' when unrouted."""
        for name, route in self.outputs.items():
            if self.driver.read(route.relay_pin) == route.active_level:
                return name
        return ""

    def close(self):
        """Drives every relay inactive and releases the lines."""
        for route in self.outputs.values():
            try:
                self.driver.write(route.relay_pin, route.inactive_level)
            except Exception as e:
                self.logger.error(f"Error releasing GPIO {route.relay_pin} for '{self.name}': {e}")
            self.driver.close(route.relay_pin)
        self.outputs.clear()
