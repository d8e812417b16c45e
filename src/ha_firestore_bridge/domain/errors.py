"""Error taxonomy shared by the hub adapter, the store adapter and the engine.

Adapter errors are transient by nature (network, timeout, auth). The engine
catches them at its boundary, logs them with entity context and abandons the
current reconciliation attempt; nothing is retried automatically.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class RemoteQueryError(BridgeError):
    """Raised when reading state from the hub fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteCommandError(BridgeError):
    """Raised when a hub service call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HubAuthError(BridgeError):
    """Raised when the hub rejects the websocket authentication handshake."""


class StoreWriteError(BridgeError):
    """Raised when an upsert into the document store fails."""


class StoreUnavailableError(BridgeError):
    """Raised when the document store client cannot be initialized."""


class UnknownEntityError(BridgeError):
    """Raised when an entity id or document key cannot be resolved."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key
