from enum import Enum

from wabridge.network.events import CloseReason


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AWAITING_PAIRING = "AWAITING_PAIRING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


# Target state -> states it may be entered from.
# AWAITING_PAIRING re-enters itself when the network rotates the pairing code.
ALLOWED_TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.DISCONNECTED, ConnectionState.CLOSED},
    ConnectionState.AWAITING_PAIRING: {ConnectionState.CONNECTING, ConnectionState.AWAITING_PAIRING},
    ConnectionState.OPEN: {ConnectionState.CONNECTING, ConnectionState.AWAITING_PAIRING},
    ConnectionState.CLOSED: {ConnectionState.CONNECTING, ConnectionState.AWAITING_PAIRING, ConnectionState.OPEN},
    ConnectionState.DISCONNECTED: set(),
}


def can_transition(current: ConnectionState, target: ConnectionState) -> bool:
    return current in ALLOWED_TRANSITIONS.get(target, set())


class CloseKind(str, Enum):
    LOGOUT = "LOGOUT"            # user unlinked the device: terminal
    BAD_SESSION = "BAD_SESSION"  # stored credentials unusable: wipe and pair again
    TRANSIENT = "TRANSIENT"      # anything else: reconnect after the fixed delay


# Disconnect status codes used by the web protocol sidecars
LOGOUT_CODES = {401}
BAD_SESSION_CODES = {500, 411}

LOGOUT_MARKERS = ("logout", "logged out", "loggedout", "logged_out", "unpaired")
BAD_SESSION_MARKERS = ("auth_failure", "bad session", "bad_session", "badsession",
                       "connection failure", "multidevice mismatch")


def classify_close_reason(reason: CloseReason) -> CloseKind:
    if reason.code in LOGOUT_CODES:
        return CloseKind.LOGOUT
    if reason.code in BAD_SESSION_CODES:
        return CloseKind.BAD_SESSION
    text = (reason.message or "").lower()
    if any(m in text for m in LOGOUT_MARKERS):
        return CloseKind.LOGOUT
    if any(m in text for m in BAD_SESSION_MARKERS):
        return CloseKind.BAD_SESSION
    return CloseKind.TRANSIENT
