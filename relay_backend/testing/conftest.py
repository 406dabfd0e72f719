import pytest

from relay_backend.hardware.mock_gpio import MockGpioDriver
from relay_backend.notifications import NotificationSink
from relay_backend.settings import (AppSettings, InactiveRelaySettings,
                                    PhysicalButtonConfig, RouteConfig)
from relay_backend.switcher_state import SwitcherState


class RecordingNotifier(NotificationSink):
    def __init__(self):
        self.states = []
        self.settings = []

    def state_changed(self, state):
        self.states.append(dict(state))

    def settings_changed(self, settings):
        self.settings.append(settings)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def studio_settings(**overrides) -> AppSettings:
    """Single-output deployment: two microphones feeding one studio."""
    values = dict(
        routes=(
            RouteConfig(source_name="Mic1", output_name="Studio", relay_pin=5, active_low=True),
            RouteConfig(source_name="Mic2", output_name="Studio", relay_pin=6, active_low=True),
        ),
    )
    values.update(overrides)
    return AppSettings(**values)


def multi_output_settings(**overrides) -> AppSettings:
    values = dict(
        routes=(
            RouteConfig(source_name="Mic1", output_name="Studio1", relay_pin=5, active_low=True),
            RouteConfig(source_name="Mic1", output_name="Studio2", relay_pin=6, active_low=True),
            RouteConfig(source_name="Mic2", output_name="Studio1", relay_pin=13, active_low=True),
            RouteConfig(source_name="Mic2", output_name="Studio2", relay_pin=19, active_low=True),
            RouteConfig(source_name="Line", output_name="Studio2", relay_pin=26, active_low=False, mirror_message="LINE ON AIR"),
        ),
    )
    values.update(overrides)
    return AppSettings(**values)


@pytest.fixture
def driver():
    return MockGpioDriver()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_switcher(driver, notifier, clock):
    def _make(settings: AppSettings = None, **kwargs) -> SwitcherState:
        switcher = SwitcherState(driver, notifier=notifier, clock=clock, **kwargs)
        if settings is not None:
            switcher.initialize(settings)
        return switcher
    return _make


@pytest.fixture
def button_settings():
    return studio_settings(
        physical_source_buttons={
            "Mic1": PhysicalButtonConfig(pin_number=17, trigger_state="Low"),
            "Mic2": PhysicalButtonConfig(pin_number=27, trigger_state="High"),
        },
        inactive_relay=InactiveRelaySettings(pin=12, inactive_state="High"),
    )
