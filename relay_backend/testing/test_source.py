import pytest

from relay_backend.exceptions import HardwareAcquisitionError
from relay_backend.hardware.gpio import HIGH, LOW
from relay_backend.hardware.source import Source
from relay_backend.settings import RouteConfig


@pytest.fixture
def source(driver):
    source = Source("Mic1", driver)
    source.add_output_pin(RouteConfig(source_name="Mic1", output_name="Studio1", relay_pin=5, active_low=True))
    source.add_output_pin(RouteConfig(source_name="Mic1", output_name="Studio2", relay_pin=6, active_low=False))
    return source


def test_pins_start_inactive(source, driver):
    assert driver.read(5) == HIGH
    assert driver.read(6) == LOW
    assert source.current_route() == ""


def test_only_one_output_is_active(source, driver):
    assert source.enable_output("Studio1")
    assert (driver.read(5), driver.read(6)) == (LOW, LOW)
    assert source.current_route() == "Studio1"

    assert source.enable_output("Studio2")
    assert (driver.read(5), driver.read(6)) == (HIGH, HIGH)
    assert source.current_route() == "Studio2"


def test_releases_before_driving_the_new_relay(source, driver):
    source.enable_output("Studio1")
    driver.write_log.clear()

    source.enable_output("Studio2")

    assert driver.write_log == [(5, HIGH), (6, HIGH)]


def test_unknown_output_changes_nothing(source, driver):
    source.enable_output("Studio1")
    driver.write_log.clear()

    assert not source.enable_output("Lobby")
    assert driver.write_log == []
    assert source.current_route() == "Studio1"


def test_disable_output(source, driver):
    source.enable_output("Studio2")
    source.disable_output()

    assert source.current_route() == ""
    assert (driver.read(5), driver.read(6)) == (HIGH, LOW)


def test_close_releases_every_line(source, driver):
    source.enable_output("Studio1")
    source.close()

    assert driver.open_pins == set()
    assert driver.read(5) == HIGH
    assert source.outputs == {}


def test_claim_failure_propagates(driver):
    driver.fail_on_open.add(7)
    source = Source("Mic2", driver)

    with pytest.raises(HardwareAcquisitionError):
        source.add_output_pin(RouteConfig(source_name="Mic2", output_name="Studio", relay_pin=7))
    assert not source.has_output("Studio")
