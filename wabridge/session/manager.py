"""
Session Manager
---------------
Owns the persisted auth state: load on start, save on every credential
rotation, delete when the network says the stored credentials are dead.

Store failures never propagate: a bridge that cannot read its session
cold-starts into pairing, and one that cannot write it keeps running and
retries on the next rotation.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from wabridge.errors import StoreError
from wabridge.observability.logging import log, log_error
from wabridge.session.codec import decode_auth_state, encode_auth_state
from wabridge.session.credential_store import CredentialStore


class SessionManager:
    def __init__(self, store: CredentialStore):
        self.store = store
        # Serializes upload/delete so an older state can never land after a newer one
        self._lock = asyncio.Lock()
        self._pending: Optional[Any] = None
        self._saver: Optional[asyncio.Task] = None

    def _ctx(self) -> dict:
        return {"bucket": self.store.bucket, "key": self.store.key}

    async def load(self):
        try:
            raw = await run_in_threadpool(self.store.download)
        except StoreError as e:
            log_error("session_load_failed", e, **self._ctx())
            return None
        if not raw:
            log("session_absent", **self._ctx())
            return None
        try:
            state = decode_auth_state(raw)
        except (ValueError, TypeError) as e:
            # Corrupt blob: behave as if there were none and pair again
            log_error("session_decode_failed", e, sizeBytes=len(raw), **self._ctx())
            return None
        log("session_loaded", sizeBytes=len(raw), **self._ctx())
        return state

    async def save(self, state) -> bool:
        try:
            raw = encode_auth_state(state)
        except (TypeError, ValueError) as e:
            log_error("session_encode_failed", e, **self._ctx())
            return False
        async with self._lock:
            try:
                await run_in_threadpool(self.store.upload, raw)
            except StoreError as e:
                log_error("session_save_failed", e, **self._ctx())
                return False
        log("session_saved", sizeBytes=len(raw), **self._ctx())
        return True

    async def delete(self) -> bool:
        # A queued save must not resurrect credentials we are about to drop
        self._pending = None
        async with self._lock:
            try:
                existed = await run_in_threadpool(self.store.delete)
            except StoreError as e:
                log_error("session_delete_failed", e, **self._ctx())
                return False
        log("session_deleted", existed=bool(existed), **self._ctx())
        return True

    def schedule_save(self, state) -> asyncio.Task:
        """
        Persist `state` in the background. Calls arriving while an upload is in
        flight collapse into one follow-up save of the newest state.
        """
        self._pending = state
        if self._saver is None or self._saver.done():
            self._saver = asyncio.get_running_loop().create_task(self._drain())
        return self._saver

    async def _drain(self):
        while self._pending is not None:
            state, self._pending = self._pending, None
            await self.save(state)

    async def flush(self):
        saver = self._saver
        if saver is not None and not saver.done():
            await saver
