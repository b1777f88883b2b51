import json
import time
from wabridge.settings import settings

# Message bodies and credential blobs never reach stdout in clear when redaction is on
SENSITIVE_KEYS = {"text", "body", "message", "payload", "session"}

def _redact_value(v):
    if isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _redact_value(val) for k, val in v.items()}
    return v

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    if settings.ENABLE_PII_REDACTION:
        clean_fields = {}
        for k, v in fields.items():
            if k in SENSITIVE_KEYS:
                clean_fields[k] = _redact_value(v)
            elif isinstance(v, dict):
                clean_fields[k] = {sk: (_redact_value(sv) if sk in SENSITIVE_KEYS else sv) for sk, sv in v.items()}
            else:
                clean_fields[k] = v
        payload.update(clean_fields)
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str), flush=True)


def log_error(event: str, exc: BaseException, **fields):
    """Failure line with the exception type and a bounded message."""
    log(event, errorType=type(exc).__name__, error=str(exc)[:500], **fields)
