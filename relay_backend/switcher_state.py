# switcher_state.py
"""
The switching engine.

``SwitcherState`` is the only object allowed to change relay pins. It owns
one ``Source`` per configured input, the optional inactive (failsafe) relay
and the physical button inputs. Every operation that touches hardware runs
under one lock, so a button press, a remote switch request, a pin test and a
reconfiguration can never interleave. Relay writes are rare and fast; holding
the lock across them costs nothing measurable.

Notifications and mirror messages are sent after the lock is released.
"""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from relay_backend.config import BUTTON_DEBOUNCE_SECONDS, MAX_PIN, MIN_PIN
from relay_backend.exceptions import format_summary
from relay_backend.hardware.gpio import HIGH, LOW, GpioDriver, level_name
from relay_backend.hardware.source import Source
from relay_backend.notifications import NotificationSink, NullNotifier
from relay_backend.settings import (AppSettings, InactiveRelaySettings,
                                    PhysicalButtonConfig, RouteConfig)
from relay_backend.validation import ensure_valid, validate

# Engine lifecycle
UNINITIALIZED = "uninitialized"
READY = "ready"
SWITCHING = "switching"
RECONFIGURING = "reconfiguring"
DISPOSED = "disposed"

MirrorTarget = Tuple[str, int, str]


class SwitcherState:
    def __init__(self, driver: GpioDriver, notifier: Optional[NotificationSink] = None,
                 mirror=None, debounce_seconds: float = BUTTON_DEBOUNCE_SECONDS,
                 clock=time.monotonic):
        """
        :param driver: Real or simulated GPIO driver, chosen by the caller.
        :param notifier: Receives the full state after every change.
        :param mirror: Object with send_message(host, port, message), e.g. TcpMessageService.
        :param debounce_seconds: Window in which repeat edges on one button pin are dropped.
        :param clock: Monotonic time source, replaceable in tests.
        """
        self.logger = logging.getLogger("SwitcherState")
        self.driver = driver
        self.notifier = notifier or NullNotifier()
        self.mirror = mirror
        self.debounce_seconds = debounce_seconds
        self.clock = clock

        self.lock = threading.Lock()
        self.status = UNINITIALIZED
        self._settings: Optional[AppSettings] = None
        self._sources: Dict[str, Source] = {}
        self._inactive_relay: Optional[InactiveRelaySettings] = None
        # button pin -> (source name, button config)
        self._buttons: Dict[int, Tuple[str, PhysicalButtonConfig]] = {}
        self._last_edge: Dict[int, float] = {}
        self._test_pins = set()
        self._single_output = False

    # --- Lifecycle ---

    def initialize(self, settings: AppSettings):
        """
        Opens every pin of the configuration and applies the default routing.
        :raises ValidationError: if the configuration is rejected.
        :raises HardwareAcquisitionError: if a line cannot be claimed; nothing stays open.
        """
        ensure_valid(settings)
        with self.lock:
            if self.status != UNINITIALIZED:
                raise RuntimeError(f"SwitcherState cannot be initialized while {self.status}.")
            self._build(settings)
            self._settings = settings
            self._apply_default_routing(settings)
            self.status = READY
            state = self._snapshot()
        self.logger.info(f"Switcher initialized with {len(self._sources)} sources. State: {state}")
        self._notify_state(state)

    def apply_settings(self, new_settings: AppSettings) -> Tuple[bool, str]:
        """
        Replaces the running topology. Either the whole new configuration is
        opened, or the previous one keeps running with its previous routing.
        :return: (success, error text). The error text is the itemized
                 validation summary when validation fails.
        """
        ok, errors = validate(new_settings)
        if not ok:
            summary = format_summary(errors)
            self.logger.warning(f"Rejected new configuration.\n{summary}")
            return False, summary

        with self.lock:
            if self.status == DISPOSED:
                return False, "Switcher has been shut down."

            previous = self._settings
            previous_state = self._snapshot()
            if previous is not None and previous.use_mock_gpio != new_settings.use_mock_gpio:
                self.logger.warning("UseMockGpio changed. Restart the server to switch GPIO drivers.")

            self.status = RECONFIGURING
            self.logger.info("Applying new configuration...")
            self._teardown()
            try:
                self._build(new_settings)
            except Exception as e:
                self.logger.error(f"Failed to open new configuration, keeping the previous one: {e}")
                self._restore(previous, previous_state)
                self.status = READY if previous is not None else UNINITIALIZED
                return False, f"Failed to apply configuration: {e}"

            self._settings = new_settings
            self._apply_default_routing(new_settings)
            self.status = READY
            state = self._snapshot()

        self.logger.info("New configuration applied.")
        try:
            self.notifier.settings_changed(new_settings)
        except Exception as e:
            self.logger.error(f"Error broadcasting new configuration: {e}")
        self._notify_state(state)
        return True, ""

    def dispose(self):
        """Failsafe relay inactive first, then every line released."""
        with self.lock:
            if self.status == DISPOSED:
                return
            self.logger.info("Shutting down switcher...")
            self._teardown()
            self.status = DISPOSED
        self.logger.info("Switcher cleanup complete.")

    # --- Control surface ---

    def switch_source(self, source: str, output: str) -> bool:
        """
        Routes a source to an output. Unknown combinations are ignored;
        callers check them against the live route table first.
        """
        with self.lock:
            if not self._accepting_commands():
                return False
            route = self._switch_locked(source, output)
            if route is None:
                return False
            mirror_target = self._mirror_target(route)
            state = self._snapshot()
        self._notify_state(state)
        self._dispatch_mirror(mirror_target)
        return True

    def clear_source(self, source: str) -> bool:
        with self.lock:
            if not self._accepting_commands():
                return False
            target = self._sources.get(source)
            if target is None:
                self.logger.info(f"Clear requested for unknown source '{source}', ignoring.")
                return False
            target.disable_output()
            self.logger.info(f"Source '{source}' cleared.")
            state = self._snapshot()
        self._notify_state(state)
        return True

    def get_system_state(self) -> Dict[str, str]:
        """source name -> routed output name, '' when unrouted."""
        with self.lock:
            return self._snapshot()

    def get_settings(self) -> Optional[AppSettings]:
        with self.lock:
            return self._settings

    def set_inactive_relay_to_inactive_state(self):
        """Idempotent; used on shutdown. Write failures are logged, never raised."""
        with self.lock:
            self._drive_inactive_relay()

    def test_pin(self, pin: int, active_low: bool, active: bool) -> bool:
        """
        Forces a pin to the level of a relay in the requested state, bypassing
        routes. Used while wiring a new installation.
        """
        if pin < MIN_PIN or pin > MAX_PIN:
            self.logger.warning(f"Pin test rejected: pin {pin} outside {MIN_PIN}..{MAX_PIN}.")
            return False
        if active:
            level = LOW if active_low else HIGH
        else:
            level = HIGH if active_low else LOW

        with self.lock:
            if self.status == DISPOSED:
                return False
            if pin in self._buttons:
                self.logger.warning(f"Pin test rejected: GPIO {pin} is a button input.")
                return False
            try:
                if self.driver.is_open(pin):
                    self.driver.write(pin, level)
                else:
                    self.driver.open_output(pin, level)
                    self._test_pins.add(pin)
            except Exception as e:
                self.logger.error(f"Pin test on GPIO {pin} failed: {e}")
                return False
            self.logger.info(f"Pin test: GPIO {pin} set to {level_name(level)} (active={active}, activeLow={active_low})")
            state = self._snapshot()
        self._notify_state(state)
        return True

    # --- Physical buttons ---

    def handle_button_edge(self, pin: int, edge: str):
        """Edge callback registered with the driver for every button pin."""
        with self.lock:
            if self.status in (UNINITIALIZED, DISPOSED):
                return
            binding = self._buttons.get(pin)
            if binding is None:
                self.logger.info(f"Edge on unregistered GPIO {pin}, ignoring.")
                return

            source_name, button = binding
            if edge != button.trigger_edge:
                self.logger.info(f"Ignoring {edge} edge on GPIO {pin} for '{source_name}' (triggers on {button.trigger_edge}).")
                return

            now = self.clock()
            last = self._last_edge.get(pin)
            if last is not None and now - last < self.debounce_seconds:
                self.logger.debug(f"Debounced {edge} edge on GPIO {pin}.")
                return
            self._last_edge[pin] = now

            routes = [r for r in self._settings.routes if r.source_name == source_name]
            if not routes:
                self.logger.warning(f"Button on GPIO {pin} pressed but source '{source_name}' has no route.")
                return

            self.logger.info(f"Button on GPIO {pin} pressed: switching '{source_name}' -> '{routes[0].output_name}'")
            route = self._switch_locked(source_name, routes[0].output_name)
            if route is None:
                return
            mirror_target = self._mirror_target(route)
            state = self._snapshot()
        self._notify_state(state)
        self._dispatch_mirror(mirror_target)

    # --- Internals (caller holds the lock) ---

    def _accepting_commands(self) -> bool:
        if self.status in (UNINITIALIZED, DISPOSED):
            self.logger.warning(f"Command ignored: switcher is {self.status}.")
            return False
        return True

    def _switch_locked(self, source: str, output: str) -> Optional[RouteConfig]:
        target = self._sources.get(source)
        if target is None or not target.has_output(output):
            self.logger.info(f"No route '{source}' -> '{output}', ignoring.")
            return None

        self.status = SWITCHING
        # Release the output before driving the new relay so two feeds never overlap
        if self._single_output:
            for other in self._sources.values():
                if other is not target:
                    other.disable_output()
        else:
            for name, other in self._sources.items():
                if other is not target and other.current_route() == output:
                    self.logger.info(f"Output '{output}' reassigned from '{name}' to '{source}'.")
                    other.disable_output()
        target.enable_output(output)
        self.status = READY
        return target.outputs[output]

    def _mirror_target(self, route: RouteConfig) -> Optional[MirrorTarget]:
        if not route.mirror_message or self._settings is None or not self._settings.has_mirror_endpoint:
            return None
        return self._settings.tcp_mirror_address, self._settings.tcp_mirror_port, route.mirror_message

    def _snapshot(self) -> Dict[str, str]:
        return {name: source.current_route() for name, source in self._sources.items()}

    def _build(self, settings: AppSettings):
        """Opens every line of a configuration. On failure, everything opened here is released."""
        sources: Dict[str, Source] = {}
        buttons: Dict[int, Tuple[str, PhysicalButtonConfig]] = {}
        inactive_relay = None
        try:
            for source_name in settings.sources:
                source = Source(source_name, self.driver)
                sources[source_name] = source
                for route in settings.routes:
                    if route.source_name == source_name and not source.has_output(route.output_name):
                        source.add_output_pin(route)

            if settings.inactive_relay is not None:
                relay = settings.inactive_relay
                self.driver.open_output(relay.pin, relay.active_level)
                inactive_relay = relay
                self.logger.info(f"Inactive relay on GPIO {relay.pin} set active ({level_name(relay.active_level)}).")

            for source_name, button in settings.physical_source_buttons.items():
                canonical = settings.find_source(source_name)
                self.driver.open_input(button.pin_number, pull_up=button.triggers_low)
                buttons[button.pin_number] = (canonical, button)
                self.driver.on_edge(button.pin_number, self.handle_button_edge)
                self.logger.info(f"  - Button on GPIO {button.pin_number} for '{canonical}' (trigger {button.trigger_state})")
        except Exception:
            for pin in buttons:
                self.driver.remove_edge_callback(pin)
                self.driver.close(pin)
            if inactive_relay is not None:
                self._drive_inactive_relay(inactive_relay)
                self.driver.close(inactive_relay.pin)
            for source in sources.values():
                source.close()
            raise

        self._sources = sources
        self._buttons = buttons
        self._inactive_relay = inactive_relay
        self._last_edge = {}
        self._single_output = len(settings.outputs) == 1

    def _teardown(self):
        self._drive_inactive_relay()
        for pin in self._buttons:
            self.driver.remove_edge_callback(pin)
            self.driver.close(pin)
        for source in self._sources.values():
            source.close()
        if self._inactive_relay is not None:
            self.driver.close(self._inactive_relay.pin)
        for pin in self._test_pins:
            self.driver.close(pin)
        self._sources = {}
        self._buttons = {}
        self._inactive_relay = None
        self._test_pins = set()

    def _restore(self, previous: Optional[AppSettings], previous_state: Dict[str, str]):
        if previous is None:
            return
        try:
            self._build(previous)
        except Exception as e:
            self.logger.critical(f"Unable to restore previous configuration, relays are unrouted: {e}")
            return
        for source_name, output in previous_state.items():
            if output and source_name in self._sources:
                self._sources[source_name].enable_output(output)
        self.logger.info("Previous configuration restored.")

    def _drive_inactive_relay(self, relay: Optional[InactiveRelaySettings] = None):
        relay = relay or self._inactive_relay
        if relay is None:
            return
        try:
            self.driver.write(relay.pin, relay.inactive_level)
            self.logger.info(f"Inactive relay on GPIO {relay.pin} set inactive ({level_name(relay.inactive_level)}).")
        except Exception as e:
            self.logger.error(f"Error setting inactive relay on GPIO {relay.pin}: {e}")

    def _apply_default_routing(self, settings: AppSettings):
        if settings.default_routes:
            claimed: Dict[str, str] = {}
            for source_name, output_name in settings.default_routes.items():
                if not output_name:
                    continue
                route = settings.find_route(source_name, output_name)
                if route is None:
                    self.logger.warning(f"Default route '{source_name}' -> '{output_name}' is not a configured route, ignoring.")
                    continue
                key = route.output_name.lower()
                if key in claimed:
                    self.logger.warning(
                        f"Default route '{route.source_name}' -> '{route.output_name}' ignored: "
                        f"output already defaulted to '{claimed[key]}'."
                    )
                    continue
                claimed[key] = route.source_name
                self._switch_locked(route.source_name, route.output_name)
        elif settings.default_source:
            routes = settings.routes_for(settings.default_source)
            if routes:
                self._switch_locked(routes[0].source_name, routes[0].output_name)
        else:
            self.logger.info("No default routing configured; all outputs start unrouted.")

    # --- Outside the lock ---

    def _notify_state(self, state: Dict[str, str]):
        try:
            self.notifier.state_changed(state)
        except Exception as e:
            self.logger.error(f"Error broadcasting system state: {e}")

    def _dispatch_mirror(self, target: Optional[MirrorTarget]):
        if target is None or self.mirror is None:
            return
        # Never block switching on the network
        threading.Thread(target=self.mirror.send_message, args=target, daemon=True).start()
