"""
Relational store access (Supabase PostgREST over httpx).
Two tables matter: `messages` (insert only) and `productos` (read only).
"""
from __future__ import annotations

from typing import List, Optional

import httpx

from wabridge.errors import StoreError
from wabridge.settings import settings
from wabridge.store.blob_store import supabase_headers
from wabridge.store.models import MessageRecord, PRODUCT_COLUMNS

MESSAGES_TABLE = "messages"
PRODUCTS_TABLE = "productos"


class MessageRepo:
    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self._transport = transport

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            headers=supabase_headers(self.service_key),
            transport=self._transport,
        )

    def insert_message(self, record: MessageRecord) -> dict:
        """Insert one row into `messages` and return it as stored."""
        try:
            with self._client() as client:
                resp = client.post(
                    self._table_url(MESSAGES_TABLE),
                    json=record.to_row(),
                    headers={"Prefer": "return=representation"},
                )
        except httpx.HTTPError as e:
            raise StoreError(f"insert into {MESSAGES_TABLE} failed: {e}") from e
        if not (200 <= resp.status_code < 300):
            raise StoreError(f"insert into {MESSAGES_TABLE} failed: {resp.status_code} {(resp.text or '')[:200]}")
        try:
            rows = resp.json()
        except ValueError:
            return record.to_row()
        if isinstance(rows, list) and rows:
            return rows[0]
        return record.to_row()

    def list_products(self) -> List[dict]:
        try:
            with self._client() as client:
                resp = client.get(
                    self._table_url(PRODUCTS_TABLE),
                    params={"select": ",".join(PRODUCT_COLUMNS)},
                )
        except httpx.HTTPError as e:
            raise StoreError(f"select from {PRODUCTS_TABLE} failed: {e}") from e
        if not (200 <= resp.status_code < 300):
            raise StoreError(f"select from {PRODUCTS_TABLE} failed: {resp.status_code} {(resp.text or '')[:200]}")
        try:
            rows = resp.json()
        except ValueError as e:
            raise StoreError(f"select from {PRODUCTS_TABLE} returned invalid JSON") from e
        if not isinstance(rows, list):
            raise StoreError(f"select from {PRODUCTS_TABLE} returned {type(rows).__name__}, expected list")
        return [r for r in rows if isinstance(r, dict)]


def build_message_repo(s=None) -> MessageRepo:
    s = s or settings
    return MessageRepo(s.SUPABASE_URL, s.SUPABASE_SERVICE_ROLE_KEY, timeout=s.STORE_TIMEOUT_SEC)
