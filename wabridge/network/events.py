from dataclasses import dataclass
from typing import Any, Optional

from wabridge.store.models import InboundMessage


@dataclass(frozen=True)
class CloseReason:
    code: Optional[int] = None
    message: str = ""

    def describe(self) -> str:
        if self.code is None:
            return self.message or "unknown"
        return f"{self.code}:{self.message}" if self.message else str(self.code)


@dataclass(frozen=True)
class PairingCode:
    code: str


@dataclass(frozen=True)
class CredentialsChanged:
    state: Any


@dataclass(frozen=True)
class ConnectionOpened:
    own_address: Optional[str] = None


@dataclass(frozen=True)
class ConnectionClosed:
    reason: CloseReason = CloseReason()


@dataclass(frozen=True)
class MessageReceived:
    message: InboundMessage


EVENT_TYPES = (PairingCode, CredentialsChanged, ConnectionOpened, ConnectionClosed, MessageReceived)
