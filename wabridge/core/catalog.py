from typing import Optional

from starlette.concurrency import run_in_threadpool

from wabridge.errors import StoreError
from wabridge.observability.logging import log, log_error
from wabridge.store.message_repo import MessageRepo
from wabridge.store.models import CatalogSnapshot, Product
from wabridge.utils.time import now_ms


class CatalogCache:
    """Product list read through from `productos`; swapped wholesale on each load."""

    def __init__(self, repo: MessageRepo):
        self.repo = repo
        self._snapshot: Optional[CatalogSnapshot] = None

    def current(self) -> Optional[CatalogSnapshot]:
        return self._snapshot

    async def reload(self) -> Optional[CatalogSnapshot]:
        try:
            rows = await run_in_threadpool(self.repo.list_products)
        except StoreError as e:
            # Keep serving the previous snapshot
            log_error("catalog_reload_failed", e, kept=len(self._snapshot or ()))
            return self._snapshot
        snapshot = CatalogSnapshot(
            products=tuple(Product.from_row(r) for r in rows),
            loaded_at_ms=now_ms(),
        )
        self._snapshot = snapshot
        log("catalog_reloaded", products=len(snapshot))
        return snapshot
