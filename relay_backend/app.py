import atexit
import logging
import sys

from flask import Flask, jsonify
from flask_socketio import SocketIO, emit  # type: ignore

from relay_backend.config import (CONFIG_PATH, FORCE_MOCK_GPIO, GPIO_CHIP,
                                  LOG_DIR, LOG_LEVEL, LOG_MAX_FILES,
                                  LOG_NAME_PREFIX, MDNS_ENABLED,
                                  SERVER_HOST)
from relay_backend.config_watcher import ConfigurationWatcher
from relay_backend.exceptions import (ConfigurationError,
                                      HardwareAcquisitionError,
                                      ValidationError)
from relay_backend.hardware.gpio import create_driver
from relay_backend.logging_utils import configure_logging
from relay_backend.notifications import SYSTEM_STATE_EVENT, SocketIONotifier
from relay_backend.services.configuration_service import ConfigurationService
from relay_backend.services.mdns_beacon import MdnsBeaconService
from relay_backend.services.tcp_mirror import TcpMessageService
from relay_backend.services.udp_listener import UdpListenerService
from relay_backend.settings import (load_settings, settings_from_dict,
                                    settings_to_dict)
from relay_backend.switcher_state import SwitcherState
from relay_backend.validation import ensure_valid
from relay_backend.version import check_compatibility, get_version


def create_app(switcher_state: SwitcherState, configuration_service: ConfigurationService = None):
    """
    Builds the Flask app and the Socket.IO hub around an existing switcher.
    The switcher's notifications are routed to the hub's clients.
    """
    app = Flask(__name__)
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")
    switcher_state.notifier = SocketIONotifier(socketio)

    @app.route('/')
    def index():
        return f"Remote Relay server {get_version()}. The Socket.IO hub is hosted at /socket.io"

    @app.route('/api/state', methods=['GET'])
    def api_state():
        """
        Current routing: source name -> output name ('' when unrouted).
        """
        return jsonify(switcher_state.get_system_state())

    @app.route('/api/settings', methods=['GET'])
    def api_settings():
        settings = switcher_state.get_settings()
        if settings is None:
            return jsonify({'error': 'Switcher is not initialized'}), 503
        return jsonify(settings_to_dict(settings))

    # --- Web Socket Event Handlers ---

    @socketio.on('connect')
    def handle_connect():
        """
        Sends the current state to a newly connected client.
        """
        logging.info('Client connected to relay hub.')
        emit(SYSTEM_STATE_EVENT, switcher_state.get_system_state())

    @socketio.on('disconnect')
    def handle_disconnect():
        logging.info('Client disconnected from relay hub.')

    @socketio.on('handshake')
    def handle_handshake(data):
        """
        Expected data: {'clientVersion': '1.4.0'}
        """
        client_version = (data or {}).get('clientVersion')
        response = check_compatibility(client_version)
        logging.info(f"Handshake from client {client_version}: {response['status']}")
        return response

    @socketio.on('switch_source')
    def handle_switch_source(data):
        """
        Routes a source to an output.
        Expected data: {'source': 'Mic1', 'output': 'Studio'}
        """
        source = (data or {}).get('source')
        output = (data or {}).get('output')
        logging.info(f"Received 'switch_source' event: '{source}' -> '{output}'")

        settings = switcher_state.get_settings()
        route = settings.find_route(source, output) if settings and source and output else None
        if route is None:
            logging.warning(f"Warning: No route '{source}' -> '{output}'")
            return {'success': False, 'error': f"No route '{source}' -> '{output}'."}

        switched = switcher_state.switch_source(route.source_name, route.output_name)
        return {'success': switched}

    @socketio.on('clear_source')
    def handle_clear_source(data):
        """
        Expected data: {'source': 'Mic1'}
        """
        source = (data or {}).get('source')
        settings = switcher_state.get_settings()
        canonical = settings.find_source(source) if settings and source else None
        if canonical is None:
            logging.warning(f"Warning: Unknown source '{source}'")
            return {'success': False, 'error': f"Unknown source '{source}'."}
        return {'success': switcher_state.clear_source(canonical)}

    @socketio.on('get_system_state')
    def handle_get_system_state(data=None):
        state = switcher_state.get_system_state()
        emit(SYSTEM_STATE_EVENT, state)
        return state

    @socketio.on('get_settings')
    def handle_get_settings(data=None):
        settings = switcher_state.get_settings()
        return settings_to_dict(settings) if settings is not None else None

    @socketio.on('save_configuration')
    def handle_save_configuration(data):
        """
        Validates, persists and applies a configuration from the setup screen.
        Expected data: {'settings': {...AppSettings JSON...}}
        """
        if configuration_service is None:
            return {'success': False, 'error': 'Saving is not available on this server.'}
        try:
            settings = settings_from_dict((data or {}).get('settings'))
        except ConfigurationError as e:
            return {'success': False, 'error': str(e)}

        saved, error = configuration_service.save(settings)
        if not saved:
            return {'success': False, 'error': error}

        current = switcher_state.get_settings()
        if current is not None and current.server_port != settings.server_port:
            logging.warning(f"ServerPort saved as {settings.server_port}; it takes effect after a restart.")
            settings = settings.with_server_port(current.server_port)
        applied, error = switcher_state.apply_settings(settings)
        return {'success': applied, 'error': error or None}

    @socketio.on('test_pin')
    def handle_test_pin(data):
        """
        Forces a pin while wiring relays.
        Expected data: {'pin': 5, 'activeLow': True, 'active': True}
        """
        data = data or {}
        try:
            pin = int(data.get('pin'))
        except (TypeError, ValueError):
            return {'success': False, 'error': f"Invalid pin {data.get('pin')!r}."}
        active_low = data.get('activeLow', True)
        active = data.get('active', False)
        for key, value in (('activeLow', active_low), ('active', active)):
            if not isinstance(value, bool):
                return {'success': False, 'error': f"{key} must be true or false, got {value!r}."}
        ok = switcher_state.test_pin(pin, active_low, active)
        return {'success': ok}

    return app, socketio


# --- Main Application ---

def shutdown(switcher_state: SwitcherState, driver, services=()):
    """
    Stops the background services, then the switcher: failsafe relay first,
    then every GPIO line released.
    """
    logging.info("Server is shutting down. Performing cleanup...")
    for service in services:
        try:
            service.stop()
        except Exception as e:
            logging.error(f"Error stopping {type(service).__name__}: {e}")
    switcher_state.dispose()
    driver.close_all()


def main():
    configure_logging(LOG_LEVEL)

    try:
        settings = ensure_valid(load_settings(CONFIG_PATH))
    except (OSError, ConfigurationError) as e:
        logging.critical(f"Unable to load configuration from {CONFIG_PATH}: {e}")
        sys.exit(1)
    except ValidationError as e:
        logging.critical(f"Refusing to start.\n{e.summary}")
        sys.exit(1)

    if settings.logging_enabled:
        log_path = configure_logging(LOG_LEVEL, LOG_DIR, LOG_NAME_PREFIX, LOG_MAX_FILES)
        logging.info(f"Logging to {log_path}")

    try:
        driver = create_driver(settings.use_mock_gpio or FORCE_MOCK_GPIO, GPIO_CHIP)
    except HardwareAcquisitionError as e:
        logging.critical(f"Unable to open GPIO: {e}")
        sys.exit(1)

    switcher_state = SwitcherState(driver, mirror=TcpMessageService())
    app, socketio = create_app(switcher_state, ConfigurationService(CONFIG_PATH))

    try:
        switcher_state.initialize(settings)
    except HardwareAcquisitionError as e:
        logging.critical(f"Unable to claim relay pins, refusing to start: {e}")
        driver.close_all()
        sys.exit(1)

    watcher = ConfigurationWatcher(CONFIG_PATH, switcher_state)
    watcher.start()
    services = [watcher]

    if settings.udp_api_port:
        udp_listener = UdpListenerService(switcher_state, settings.udp_api_port)
        socketio.start_background_task(target=udp_listener.serve_forever)
        services.append(udp_listener)

    if MDNS_ENABLED:
        beacon = MdnsBeaconService(settings.server_port)
        if beacon.start():
            services.append(beacon)

    atexit.register(shutdown, switcher_state, driver, services)

    logging.info(f"Starting relay server {get_version()} at http://{SERVER_HOST}:{settings.server_port}")
    socketio.run(app, host=SERVER_HOST, port=settings.server_port, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
