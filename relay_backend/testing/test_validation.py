import pytest
from conftest import studio_settings

from relay_backend.exceptions import ValidationError
from relay_backend.settings import (AppSettings, InactiveRelaySettings,
                                    PhysicalButtonConfig, RouteConfig)
from relay_backend.validation import ensure_valid, try_validate, validate


def test_valid_configuration_passes():
    ok, errors = validate(studio_settings(
        default_routes={"Mic1": "Studio"},
        physical_source_buttons={"Mic2": PhysicalButtonConfig(pin_number=17, trigger_state="Low")},
        inactive_relay=InactiveRelaySettings(pin=12, inactive_state="High"),
    ))

    assert ok
    assert errors == []


def test_no_routes():
    ok, errors = validate(AppSettings())

    assert not ok
    assert errors == ["At least one route must be configured."]


def test_every_defect_is_reported():
    settings = AppSettings(
        routes=(
            RouteConfig(source_name="Mic1", output_name="Studio", relay_pin=5),
            RouteConfig(source_name="mic1", output_name="STUDIO", relay_pin=6),        # duplicate, case-insensitive
            RouteConfig(source_name="Mic2", output_name="Studio", relay_pin=41),       # pin too high
            RouteConfig(source_name="", output_name="Studio", relay_pin=7),            # no source name
        ),
        default_routes={"Ghost": "Studio"},          # unknown source
        physical_source_buttons={"Mic2": PhysicalButtonConfig(pin_number=0, trigger_state="Sideways")},  # bad pin, bad trigger
        inactive_relay=InactiveRelaySettings(pin=99, inactive_state="High"),                      # bad failsafe pin
    )

    ok, errors = validate(settings)

    assert not ok
    assert len(errors) == 7
    joined = "\n".join(errors)
    assert "Duplicate route detected for 'mic1' -> 'STUDIO'." in joined
    assert "Route Mic2->Studio has pin '41' which exceeds maximum valid pin (40)." in joined
    assert "A route is missing a SourceName." in joined
    assert "Default route references unknown source 'Ghost'." in joined
    assert "Physical button for source 'Mic2' has invalid pin '0'" in joined
    assert "TriggerState 'Sideways'" in joined
    assert "Inactive relay has pin '99'" in joined


def test_default_route_must_be_a_defined_pair():
    settings = AppSettings(
        routes=(RouteConfig(source_name="Mic1", output_name="Studio1", relay_pin=5), RouteConfig(source_name="Mic2", output_name="Studio2", relay_pin=6)),
        default_routes={"Mic1": "Studio2", "Mic2": ""},
    )

    ok, errors = validate(settings)

    assert not ok
    assert errors == ["Default route 'Mic1' -> 'Studio2' does not match any configured route."]


def test_button_for_unknown_source():
    ok, errors = validate(studio_settings(physical_source_buttons={"Piano": PhysicalButtonConfig(pin_number=17)}))

    assert errors == ["Physical button configured for unknown source 'Piano'."]


@pytest.mark.parametrize("overrides, expected", [
    (dict(server_port=0), "ServerPort '0' must be between 1 and 65535."),
    (dict(udp_api_port=70000), "UdpApiPort '70000' must be between 1 and 65535."),
    (dict(tcp_mirror_address="10.0.0.2"), "TcpMirrorAddress is set but TcpMirrorPort is missing."),
    (dict(tcp_mirror_port=9000), "TcpMirrorPort is set but TcpMirrorAddress is missing."),
    (dict(default_source="Piano"), "DefaultSource references unknown source 'Piano'."),
])
def test_port_and_default_source_rules(overrides, expected):
    ok, errors = validate(studio_settings(**overrides))

    assert not ok
    assert errors == [expected]


def test_summary_lists_every_violation():
    ok, summary = try_validate(AppSettings(routes=(RouteConfig(source_name="", output_name="", relay_pin=0),)))

    assert not ok
    assert summary.splitlines() == [
        "Configuration validation failed:",
        " - A route is missing a SourceName.",
        " - Route for source '<unknown>' is missing an OutputName.",
        " - Route -> has invalid pin '0'. Pin must be greater than 0.",
    ]


def test_ensure_valid_raises_with_all_errors():
    with pytest.raises(ValidationError) as excinfo:
        ensure_valid(AppSettings(server_port=-1))

    assert len(excinfo.value.errors) == 2
    assert excinfo.value.summary.startswith("Configuration validation failed:")
