# version.py

from importlib.metadata import PackageNotFoundError, version
from typing import Dict, Optional, Tuple

DISTRIBUTION_NAME = "remote-relay"

COMPATIBLE = "Compatible"
CLIENT_OUTDATED = "ClientOutdated"
SERVER_OUTDATED = "ServerOutdated"
INCOMPATIBLE = "Incompatible"


def get_version() -> str:
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "0.0.0"


def _major_minor(text: Optional[str]) -> Optional[Tuple[int, int]]:
    if not text:
        return None
    parts = text.strip().lstrip("v").split(".")
    try:
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return None
    return major, minor


def check_compatibility(client_version: Optional[str], server_version: Optional[str] = None) -> Dict[str, str]:
    """
    Clients and server must agree on major.minor; patch releases are interchangeable.
    Returns the handshake response sent back to the client.
    """
    server_version = server_version or get_version()
    client = _major_minor(client_version)
    server = _major_minor(server_version)

    if client is None or server is None:
        status = INCOMPATIBLE
        message = f"Unable to compare client version '{client_version}' with server version {server_version}."
    elif client == server:
        status = COMPATIBLE
        message = "Client and server versions match."
    elif client < server:
        status = CLIENT_OUTDATED
        message = f"Client version {client_version} is older than server version {server_version}. Please update the client."
    else:
        status = SERVER_OUTDATED
        message = f"Server version {server_version} is older than client version {client_version}. Please update the server."

    return {"status": status, "serverVersion": server_version, "message": message}
