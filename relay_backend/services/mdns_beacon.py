# services/mdns_beacon.py

import logging
import socket
from typing import Optional

from zeroconf import ServiceInfo, Zeroconf

from relay_backend.version import get_version

SERVICE_TYPE = "_remoterelay._tcp.local."
SERVICE_NAME = "RemoteRelay"


def local_address() -> str:
    """Address of the interface that carries the default route, or loopback."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            # No packet is sent; connect() only selects the outgoing interface
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


class MdnsBeaconService:
    """
    Advertises the server as _remoterelay._tcp.local. so clients on the LAN
    can find it without a configured address. Failures are logged; the server
    keeps running without the beacon.
    """
    def __init__(self, port: int, name: str = SERVICE_NAME, zeroconf_factory=Zeroconf,
                 address_lookup=local_address):
        self.port = port
        self.name = name
        self.zeroconf_factory = zeroconf_factory
        self.address_lookup = address_lookup
        self.logger = logging.getLogger("MdnsBeaconService")
        self.zeroconf: Optional[Zeroconf] = None
        self.info: Optional[ServiceInfo] = None

    def build_info(self) -> ServiceInfo:
        return ServiceInfo(
            SERVICE_TYPE,
            f"{self.name}.{SERVICE_TYPE}",
            port=self.port,
            parsed_addresses=[self.address_lookup()],
            properties={"version": get_version()},
            server=f"{socket.gethostname()}.local.",
        )

    def start(self) -> bool:
        if self.zeroconf is not None:
            return True
        self.logger.info(f"Starting mDNS beacon for {SERVICE_TYPE} on port {self.port}")
        zeroconf = None
        try:
            info = self.build_info()
            zeroconf = self.zeroconf_factory()
            zeroconf.register_service(info)
        except Exception as e:
            self.logger.error(f"Failed to start mDNS beacon: {e}")
            if zeroconf is not None:
                zeroconf.close()
            return False
        self.zeroconf, self.info = zeroconf, info
        self.logger.info("mDNS advertisement active.")
        return True

    def stop(self):
        if self.zeroconf is None:
            return
        try:
            self.zeroconf.unregister_service(self.info)
        except Exception as e:
            self.logger.warning(f"Error withdrawing mDNS advertisement: {e}")
        finally:
            self.zeroconf.close()
            self.zeroconf, self.info = None, None
        self.logger.info("mDNS beacon stopped.")
