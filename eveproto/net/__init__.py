from .socket import EVEProtoSocket
from .client import ClientCommand, ClientEvent, EVEClient
from .connection_manager import ClientConnectionManager, TrackedClient
from .server import EVEServer, ServerConfig

__all__ = [
    "EVEProtoSocket",
    "ClientCommand", "ClientEvent", "EVEClient",
    "ClientConnectionManager", "TrackedClient",
    "EVEServer", "ServerConfig",
]
