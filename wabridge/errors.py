class BridgeError(Exception):
    """Base class for errors raised by the bridge."""


class ConfigError(BridgeError):
    """Required configuration is missing; the process must not start."""


class StoreError(BridgeError):
    """A blob or relational store request failed (transport, status or payload)."""


class BlobNotFoundError(StoreError):
    """The requested object does not exist in the bucket."""


class NotReadyError(BridgeError):
    """The network connection is not open."""


class SendError(BridgeError):
    """The network refused or failed to send an outbound message."""
