import base64
import json

# Same tag the protocol sidecar writes for Buffer values, so blobs stay interchangeable
BUFFER_TAG = "Buffer"


def _json_safe(obj):
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {"type": BUFFER_TAG, "data": base64.b64encode(bytes(obj)).decode("ascii")}
    if isinstance(obj, dict):
        return {str(k): _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(v) for v in obj]
    return obj


def _is_buffer_tag(obj) -> bool:
    return (
        isinstance(obj, dict)
        and len(obj) == 2
        and obj.get("type") == BUFFER_TAG
        and "data" in obj
    )


def _rehydrate_buffers(obj):
    """
    Restore tagged byte buffers at any depth.
    `data` is base64 text; a list of ints is accepted too (Buffer.toJSON shape).
    """
    if _is_buffer_tag(obj):
        data = obj["data"]
        if isinstance(data, str):
            return base64.b64decode(data)
        if isinstance(data, list):
            return bytes(data)
    if isinstance(obj, dict):
        return {k: _rehydrate_buffers(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_rehydrate_buffers(v) for v in obj]
    return obj


def to_wire(state):
    """JSON-compatible form of an auth state (buffers tagged, nothing serialized yet)."""
    return _json_safe(state)


def from_wire(data):
    return _rehydrate_buffers(data)


def encode_auth_state(state) -> bytes:
    return json.dumps(_json_safe(state), ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_auth_state(raw):
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8")
    return _rehydrate_buffers(json.loads(raw))
