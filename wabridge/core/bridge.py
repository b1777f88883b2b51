from typing import Optional

from wabridge.core.catalog import CatalogCache
from wabridge.core.dedup import ProcessedIds
from wabridge.core.relay import MessageRelay
from wabridge.core.supervisor import ConnectionSupervisor
from wabridge.network.base import Network
from wabridge.network.sidecar import SidecarNetwork
from wabridge.observability.logging import log
from wabridge.session.credential_store import CredentialStore
from wabridge.session.manager import SessionManager
from wabridge.settings import require_valid_settings, settings
from wabridge.store.blob_store import BlobStore, build_blob_store
from wabridge.store.message_repo import MessageRepo, build_message_repo


class Bridge:
    """The one active session of this process: supervisor, relay and their stores."""

    def __init__(self, network: Network, sessions: SessionManager, repo: MessageRepo, s=None):
        s = s or settings
        self.network = network
        self.sessions = sessions
        self.repo = repo
        self.catalog = CatalogCache(repo) if s.CATALOG_ENABLED else None
        self.supervisor = ConnectionSupervisor(
            network,
            sessions,
            catalog=self.catalog,
            reconnect_delay=s.RECONNECT_DELAY_SEC,
            max_reconnect_attempts=s.RECONNECT_MAX_ATTEMPTS,
        )
        self.relay = MessageRelay(
            self.supervisor,
            repo,
            processed=ProcessedIds(max_ids=s.DEDUP_MAX_IDS, ttl_sec=s.DEDUP_TTL_SEC),
            forward_mode=s.FORWARD_MODE,
            webhook_url=s.N8N_WEBHOOK_URL,
            webhook_timeout=s.WEBHOOK_TIMEOUT_SEC,
        )
        self.supervisor.on_message = self.relay.on_inbound

    async def start(self) -> None:
        await self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()

    def status(self) -> dict:
        out = self.supervisor.status()
        out["relay"] = dict(self.relay.stats)
        out["processedIds"] = len(self.relay.processed)
        return out


def build_bridge(s=None, network: Optional[Network] = None, blob_store: Optional[BlobStore] = None,
                 repo: Optional[MessageRepo] = None) -> Bridge:
    """Validate configuration and assemble the bridge. Raises ConfigError when half-configured."""
    s = require_valid_settings(s or settings)
    if not s.N8N_WEBHOOK_URL:
        log("webhook_url_missing", detail="inbound messages will be stored but not forwarded")
    store = CredentialStore(blob_store or build_blob_store(s), s.SESSION_BUCKET, s.SESSION_FILE)
    return Bridge(
        network or SidecarNetwork(s.SIDECAR_URL, timeout=s.STORE_TIMEOUT_SEC),
        SessionManager(store),
        repo or build_message_repo(s),
        s=s,
    )
