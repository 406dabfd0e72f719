# hardware/gpio.py
"""
GPIO line access for the switcher.

The engine only talks to a ``GpioDriver``: open a line as output or input,
read it, write it, close it, and get told about edges. Two drivers exist,
``GpiozeroDriver`` for real hardware and ``MockGpioDriver`` (mock_gpio.py)
for development machines and tests. Which one runs is decided once at
startup by ``create_driver``.

Levels are raw electrical levels (``LOW``/``HIGH``); relay polarity is
handled by the caller.
"""

import logging
from typing import Callable, Dict, Optional

from gpiozero import DigitalInputDevice, DigitalOutputDevice
from gpiozero.exc import GPIOZeroError

from relay_backend.exceptions import HardwareAcquisitionError

LOW = 0
HIGH = 1

RISING = "rising"
FALLING = "falling"

# callback(pin_number, edge)
EdgeCallback = Callable[[int, str], None]


def level_name(level: int) -> str:
    return "High" if level else "Low"


class GpioDriver:
    """Capability interface shared by the real and the simulated driver."""

    def open_output(self, pin: int, initial_level: int):
        raise NotImplementedError

    def open_input(self, pin: int, pull_up: bool):
        raise NotImplementedError

    def is_open(self, pin: int) -> bool:
        raise NotImplementedError

    def read(self, pin: int) -> int:
        raise NotImplementedError

    def write(self, pin: int, level: int):
        raise NotImplementedError

    def on_edge(self, pin: int, callback: EdgeCallback):
        raise NotImplementedError

    def remove_edge_callback(self, pin: int):
        raise NotImplementedError

    def close(self, pin: int):
        raise NotImplementedError

    def close_all(self):
        raise NotImplementedError


class GpiozeroDriver(GpioDriver):
    """
    Drives real pins through gpiozero devices.
    Outputs are DigitalOutputDevice with active_high=True so device.value is the
    electrical level; inputs are DigitalInputDevice with the pull matching the
    button's idle level.
    """
    def __init__(self, pin_factory=None):
        self.logger = logging.getLogger("GpiozeroDriver")
        self.pin_factory = pin_factory
        self.outputs: Dict[int, DigitalOutputDevice] = {}
        self.inputs: Dict[int, DigitalInputDevice] = {}
        self.pull_ups: Dict[int, bool] = {}

    def open_output(self, pin: int, initial_level: int):
        if self.is_open(pin):
            raise HardwareAcquisitionError(pin, "line is already open")
        try:
            self.outputs[pin] = DigitalOutputDevice(
                pin, active_high=True, initial_value=bool(initial_level), pin_factory=self.pin_factory
            )
        except GPIOZeroError as e:
            raise HardwareAcquisitionError(pin, str(e)) from e
        self.logger.debug(f"Opened GPIO {pin} as output ({level_name(initial_level)})")

    def open_input(self, pin: int, pull_up: bool):
        if self.is_open(pin):
            raise HardwareAcquisitionError(pin, "line is already open")
        try:
            self.inputs[pin] = DigitalInputDevice(pin, pull_up=pull_up, pin_factory=self.pin_factory)
        except GPIOZeroError as e:
            raise HardwareAcquisitionError(pin, str(e)) from e
        self.pull_ups[pin] = pull_up
        self.logger.debug(f"Opened GPIO {pin} as input (pull {'up' if pull_up else 'down'})")

    def is_open(self, pin: int) -> bool:
        return pin in self.outputs or pin in self.inputs

    def read(self, pin: int) -> int:
        if pin in self.outputs:
            return HIGH if self.outputs[pin].value else LOW
        if pin in self.inputs:
            # With a pull-up the device is "active" while the line is low
            active = bool(self.inputs[pin].value)
            return LOW if active == self.pull_ups[pin] else HIGH
        raise KeyError(f"GPIO {pin} is not open")

    def write(self, pin: int, level: int):
        if pin not in self.outputs:
            raise KeyError(f"GPIO {pin} is not open as an output")
        device = self.outputs[pin]
        if level:
            device.on()
        else:
            device.off()
        self.logger.debug(f"Write {level_name(level)} to GPIO {pin}")

    def on_edge(self, pin: int, callback: EdgeCallback):
        if pin not in self.inputs:
            raise KeyError(f"GPIO {pin} is not open as an input")
        device = self.inputs[pin]
        pull_up = self.pull_ups[pin]
        activated_edge = FALLING if pull_up else RISING
        deactivated_edge = RISING if pull_up else FALLING
        device.when_activated = lambda: callback(pin, activated_edge)
        device.when_deactivated = lambda: callback(pin, deactivated_edge)

    def remove_edge_callback(self, pin: int):
        device = self.inputs.get(pin)
        if device is not None:
            device.when_activated = None
            device.when_deactivated = None

    def close(self, pin: int):
        device = self.outputs.pop(pin, None) or self.inputs.pop(pin, None)
        self.pull_ups.pop(pin, None)
        if device is not None:
            device.close()
            self.logger.debug(f"Closed GPIO {pin}")

    def close_all(self):
        for pin in list(self.outputs) + list(self.inputs):
            self.close(pin)


def create_driver(use_mock: bool, chip: Optional[int] = None) -> GpioDriver:
    """
    Picks the driver once, from explicit configuration.
    The lgpio pin factory is only imported when real hardware is requested so
    the backend stays importable on machines without lgpio.
    """
    logger = logging.getLogger("GpioDriver")
    if use_mock:
        from relay_backend.hardware.mock_gpio import MockGpioDriver
        logger.info("Using simulated GPIO driver. Hardware will not be controlled.")
        return MockGpioDriver()

    from gpiozero.pins.lgpio import LGPIOFactory
    try:
        factory = LGPIOFactory(chip=chip)
    except Exception as e:
        raise HardwareAcquisitionError(None, f"Unable to open gpiochip {chip}: {e}") from e
    logger.info(f"Using gpiozero with lgpio on gpiochip {chip}.")
    return GpiozeroDriver(pin_factory=factory)
