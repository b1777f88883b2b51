import os
from dotenv import load_dotenv

from wabridge.errors import ConfigError

load_dotenv()

class Settings:
    # Supabase: relational store always, session blob store unless BLOB_BACKEND=redis
    BLOB_BACKEND: str = os.getenv("BLOB_BACKEND", "supabase").lower()
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    SESSION_BUCKET: str = os.getenv("SESSION_BUCKET", "")
    SESSION_FILE: str = os.getenv("SESSION_FILE", "")
    STORE_TIMEOUT_SEC: float = float(os.getenv("STORE_TIMEOUT_SEC", "10"))

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "forward")

    # Downstream automation endpoint
    N8N_WEBHOOK_URL: str = os.getenv("N8N_WEBHOOK_URL", "")
    WEBHOOK_TIMEOUT_SEC: float = float(os.getenv("WEBHOOK_TIMEOUT_SEC", "10"))
    # "inline": POST from the bridge process, "rq": hand off to a worker
    FORWARD_MODE: str = os.getenv("FORWARD_MODE", "inline").lower()

    # Control surface
    PORT: int = int(os.getenv("PORT", "3000"))
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "")
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Network sidecar (speaks the messaging protocol on our behalf)
    SIDECAR_URL: str = os.getenv("SIDECAR_URL", "http://localhost:3100")

    # Connection supervisor
    RECONNECT_DELAY_SEC: float = float(os.getenv("RECONNECT_DELAY_SEC", "5"))
    RECONNECT_MAX_ATTEMPTS: int = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "0"))  # 0 = unlimited

    # Inbound dedup window
    DEDUP_MAX_IDS: int = int(os.getenv("DEDUP_MAX_IDS", "10000"))
    DEDUP_TTL_SEC: int = int(os.getenv("DEDUP_TTL_SEC", "86400"))  # 0 = keep until evicted by size

    CATALOG_ENABLED: bool = os.getenv("CATALOG_ENABLED", "true").lower() == "true"

    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

    def public_base_url(self) -> str:
        base = (self.PUBLIC_BASE_URL or "").strip().rstrip("/")
        return base or f"http://localhost:{self.PORT}"

    def validate(self) -> list:
        """
        Names of required values that are missing.
        The webhook URL is deliberately not listed: without it forwarding
        degrades to a logged no-op.
        """
        missing = []
        # The relational store is always Supabase, whatever holds the session blob
        if not self.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not self.SUPABASE_SERVICE_ROLE_KEY:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        if self.BLOB_BACKEND == "redis":
            if not self.REDIS_URL:
                missing.append("REDIS_URL")
        elif self.BLOB_BACKEND != "supabase":
            missing.append(f"BLOB_BACKEND (unknown backend {self.BLOB_BACKEND!r})")
        if not self.SESSION_BUCKET:
            missing.append("SESSION_BUCKET")
        if not self.SESSION_FILE:
            missing.append("SESSION_FILE")
        if self.FORWARD_MODE not in ("inline", "rq"):
            missing.append(f"FORWARD_MODE (unknown mode {self.FORWARD_MODE!r})")
        return missing


def require_valid_settings(s: "Settings" = None) -> "Settings":
    s = s or settings
    missing = s.validate()
    if missing:
        raise ConfigError("Missing or invalid configuration: " + ", ".join(missing))
    return s


settings = Settings()
