# settings.py
"""
Relay configuration model.

The whole device description lives in one JSON file. It is read into
frozen pydantic models so a running engine can never see a half-edited
configuration: every reload or save produces a new ``AppSettings`` value
that replaces the old one in a single assignment.

JSON keys are matched case-insensitively and the reader tolerates
``//``/``/* */`` comments and trailing commas, because the file is edited by
hand on the device. The written form uses PascalCase keys.
"""

import json
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import (BaseModel, ConfigDict, Field, StrictBool, StrictInt,
                      field_validator, model_validator)
from pydantic import ValidationError as ModelValidationError
from pydantic.alias_generators import to_pascal

from relay_backend.config import DEFAULT_SERVER_PORT
from relay_backend.exceptions import ConfigurationError
from relay_backend.hardware.gpio import FALLING, HIGH, LOW, RISING

VALID_LEVELS = ("High", "Low")


def normalize_level(value: str) -> str:
    """Returns 'High'/'Low' for any casing, or the value unchanged if it is neither."""
    for level in VALID_LEVELS:
        if isinstance(value, str) and value.strip().lower() == level.lower():
            return level
    return value


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").lower() == (b or "").lower()


class _ConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_pascal, populate_by_name=True)

    # Extra accepted spellings: lower-cased key -> alias
    _legacy_keys: ClassVar[Dict[str, str]] = {}

    @model_validator(mode="before")
    @classmethod
    def _match_keys(cls, data: Any) -> Any:
        """Maps keys in any casing, and field names, onto the model's aliases."""
        if not isinstance(data, dict):
            return data
        keys = dict(cls._legacy_keys)
        for name, info in cls.model_fields.items():
            alias = info.alias or name
            keys[name.lower()] = alias
            keys[alias.lower()] = alias
        return {keys.get(str(key).lower(), key): value for key, value in data.items()}


class RouteConfig(_ConfigModel):
    """One controllable relay: a source/output pair bound to a pin."""
    _legacy_keys: ClassVar[Dict[str, str]] = {"mirrormessage": "TcpMessage"}

    source_name: str = ""
    output_name: str = ""
    relay_pin: StrictInt = 0
    active_low: StrictBool = True
    mirror_message: Optional[str] = Field(default=None, alias="TcpMessage")

    @property
    def active_level(self) -> int:
        return LOW if self.active_low else HIGH

    @property
    def inactive_level(self) -> int:
        return HIGH if self.active_low else LOW

    def matches(self, source_name: str, output_name: str) -> bool:
        return _same(self.source_name, source_name) and _same(self.output_name, output_name)


class PhysicalButtonConfig(_ConfigModel):
    pin_number: StrictInt = 0
    trigger_state: str = "Low"

    @field_validator("trigger_state")
    @classmethod
    def _normalize_trigger(cls, value: str) -> str:
        return normalize_level(value)

    @property
    def triggers_low(self) -> bool:
        return self.trigger_state == "Low"

    @property
    def trigger_edge(self) -> str:
        # A button pulling the line low fires on the falling edge
        return FALLING if self.triggers_low else RISING

    @property
    def idle_level(self) -> int:
        return HIGH if self.triggers_low else LOW


class InactiveRelaySettings(_ConfigModel):
    """Failsafe relay: active while routing, inactive on shutdown."""
    pin: StrictInt = 0
    inactive_state: str = "High"

    @field_validator("inactive_state")
    @classmethod
    def _normalize_state(cls, value: str) -> str:
        return normalize_level(value)

    @property
    def inactive_level(self) -> int:
        return HIGH if self.inactive_state == "High" else LOW

    @property
    def active_level(self) -> int:
        return LOW if self.inactive_level == HIGH else HIGH


class AppSettings(_ConfigModel):
    routes: Tuple[RouteConfig, ...] = ()
    default_source: Optional[str] = None
    # source name -> output name, in configuration order
    default_routes: Dict[str, str] = Field(default_factory=dict)
    physical_source_buttons: Dict[str, PhysicalButtonConfig] = Field(default_factory=dict)
    source_color_palette: Dict[str, str] = Field(default_factory=dict)

    server_port: StrictInt = DEFAULT_SERVER_PORT
    tcp_mirror_address: Optional[str] = None
    tcp_mirror_port: Optional[StrictInt] = None
    udp_api_port: Optional[StrictInt] = None

    inactive_relay: Optional[InactiveRelaySettings] = None
    flash_on_select: StrictBool = False
    show_ip_on_screen: StrictBool = False
    logging_enabled: StrictBool = Field(default=False, alias="Logging")
    logo_file: str = ""
    use_mock_gpio: StrictBool = False

    @field_validator("default_source", "tcp_mirror_address")
    @classmethod
    def _empty_as_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("default_routes", mode="before")
    @classmethod
    def _null_output_as_unrouted(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {key: "" if output is None else output for key, output in value.items()}
        return value

    @property
    def sources(self) -> List[str]:
        return _distinct(route.source_name for route in self.routes)

    @property
    def outputs(self) -> List[str]:
        return _distinct(route.output_name for route in self.routes)

    @property
    def has_mirror_endpoint(self) -> bool:
        return bool(self.tcp_mirror_address) and self.tcp_mirror_port is not None

    def find_route(self, source_name: str, output_name: str) -> Optional[RouteConfig]:
        for route in self.routes:
            if route.matches(source_name, output_name):
                return route
        return None

    def routes_for(self, source_name: str) -> List[RouteConfig]:
        return [route for route in self.routes if _same(route.source_name, source_name)]

    def find_source(self, name: str) -> Optional[str]:
        """Canonical spelling of a source name, matched case-insensitively."""
        for source in self.sources:
            if _same(source, name):
                return source
        return None

    def find_output(self, name: str) -> Optional[str]:
        for output in self.outputs:
            if _same(output, name):
                return output
        return None

    def with_server_port(self, port: int) -> "AppSettings":
        return self.model_copy(update={"server_port": port})


def _distinct(names) -> List[str]:
    seen = []
    for name in names:
        if name not in seen:
            seen.append(name)
    return seen


# --- Reading ---

def _strip_comments(text: str) -> str:
    out = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
        elif ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise ConfigurationError("Unterminated /* comment in configuration file.")
            i = end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _strip_trailing_commas(text: str) -> str:
    out = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def strip_json_extras(text: str) -> str:
    """
    Removes comments, then trailing commas, so the standard json module can
    read a hand-edited file. String literals are copied untouched.
    """
    return _strip_trailing_commas(_strip_comments(text))


def _describe(error: ModelValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "Configuration"
        problems.append(f"{location}: {item['msg']}")
    return "Configuration file has invalid values: " + "; ".join(problems)


def settings_from_dict(raw: Any) -> AppSettings:
    """Builds settings from decoded JSON. Structural rules are checked by validation.validate."""
    try:
        return AppSettings.model_validate(raw)
    except ModelValidationError as e:
        raise ConfigurationError(_describe(e)) from e


def parse_settings(text: str) -> AppSettings:
    try:
        raw = json.loads(strip_json_extras(text))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file contains invalid JSON: {e}") from e
    return settings_from_dict(raw)


def load_settings(path: str) -> AppSettings:
    """Reads and parses the file. OSError is left to the caller, which may retry."""
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            text = f.read()
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"Configuration file is not valid UTF-8: {e}") from e
    return parse_settings(text)


# --- Writing ---

def settings_to_dict(settings: AppSettings) -> Dict[str, Any]:
    """Canonical PascalCase form; optional fields that are None are left out."""
    return settings.model_dump(mode="json", by_alias=True, exclude_none=True)


def dump_settings(settings: AppSettings) -> str:
    return json.dumps(settings_to_dict(settings), indent=2)
