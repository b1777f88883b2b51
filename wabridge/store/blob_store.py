"""
Blob store clients
------------------
The session blob lives in an object store addressed by (bucket, key).
Two backends share one small interface:

- SupabaseBlobStore: Supabase Storage REST API over httpx (production)
- RedisBlobStore: one redis string per object (local runs, single host)

Both raise BlobNotFoundError for a missing object and StoreError for
everything else; callers decide whether a failure is fatal.
"""
from __future__ import annotations

from typing import Optional
from urllib.parse import quote

import httpx
from redis import RedisError

from wabridge.errors import BlobNotFoundError, StoreError
from wabridge.settings import settings
from wabridge.store.redis_conn import get_redis


class BlobStore:
    def download(self, bucket: str, key: str) -> bytes:
        raise NotImplementedError

    def upload(self, bucket: str, key: str, data: bytes, upsert: bool = True) -> None:
        raise NotImplementedError

    def delete(self, bucket: str, key: str) -> None:
        raise NotImplementedError


def supabase_headers(service_key: str) -> dict:
    return {
        "apikey": service_key,
        "Authorization": f"Bearer {service_key}",
    }


def _looks_not_found(resp: httpx.Response) -> bool:
    if resp.status_code == 404:
        return True
    # Storage answers some misses with 400 and a JSON body carrying "404"/"not_found"
    if resp.status_code == 400:
        text = (resp.text or "").lower()
        return "not_found" in text or "not found" in text or '"404"' in text
    return False


class SupabaseBlobStore(BlobStore):
    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self._transport = transport

    def _object_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/{quote(bucket, safe='')}/{quote(key, safe='/')}"

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            headers=supabase_headers(self.service_key),
            transport=self._transport,
        )

    def download(self, bucket: str, key: str) -> bytes:
        try:
            with self._client() as client:
                resp = client.get(self._object_url(bucket, key))
        except httpx.HTTPError as e:
            raise StoreError(f"download {bucket}/{key} failed: {e}") from e
        if _looks_not_found(resp):
            raise BlobNotFoundError(f"{bucket}/{key} not found")
        if not (200 <= resp.status_code < 300):
            raise StoreError(f"download {bucket}/{key} failed: {resp.status_code} {(resp.text or '')[:200]}")
        return resp.content

    def upload(self, bucket: str, key: str, data: bytes, upsert: bool = True) -> None:
        headers = {
            "Content-Type": "application/json",
            "x-upsert": "true" if upsert else "false",
        }
        try:
            with self._client() as client:
                resp = client.post(self._object_url(bucket, key), content=data, headers=headers)
        except httpx.HTTPError as e:
            raise StoreError(f"upload {bucket}/{key} failed: {e}") from e
        if not (200 <= resp.status_code < 300):
            raise StoreError(f"upload {bucket}/{key} failed: {resp.status_code} {(resp.text or '')[:200]}")

    def delete(self, bucket: str, key: str) -> None:
        try:
            with self._client() as client:
                resp = client.delete(self._object_url(bucket, key))
        except httpx.HTTPError as e:
            raise StoreError(f"delete {bucket}/{key} failed: {e}") from e
        if _looks_not_found(resp):
            raise BlobNotFoundError(f"{bucket}/{key} not found")
        if not (200 <= resp.status_code < 300):
            raise StoreError(f"delete {bucket}/{key} failed: {resp.status_code} {(resp.text or '')[:200]}")


class RedisBlobStore(BlobStore):
    PREFIX = "blob:"

    def __init__(self, redis=None):
        self._redis = redis

    def _r(self):
        if self._redis is None:
            self._redis = get_redis(decode_responses=False)
        return self._redis

    def _key(self, bucket: str, key: str) -> str:
        return f"{self.PREFIX}{bucket}:{key}"

    def download(self, bucket: str, key: str) -> bytes:
        try:
            raw = self._r().get(self._key(bucket, key))
        except RedisError as e:
            raise StoreError(f"download {bucket}/{key} failed: {e}") from e
        if raw is None:
            raise BlobNotFoundError(f"{bucket}/{key} not found")
        return raw if isinstance(raw, bytes) else str(raw).encode("utf-8")

    def upload(self, bucket: str, key: str, data: bytes, upsert: bool = True) -> None:
        try:
            ok = self._r().set(self._key(bucket, key), data, nx=not upsert)
        except RedisError as e:
            raise StoreError(f"upload {bucket}/{key} failed: {e}") from e
        if not ok:
            raise StoreError(f"upload {bucket}/{key} refused: object exists and upsert is off")

    def delete(self, bucket: str, key: str) -> None:
        try:
            removed = self._r().delete(self._key(bucket, key))
        except RedisError as e:
            raise StoreError(f"delete {bucket}/{key} failed: {e}") from e
        if not removed:
            raise BlobNotFoundError(f"{bucket}/{key} not found")


def build_blob_store(s=None) -> BlobStore:
    s = s or settings
    if s.BLOB_BACKEND == "redis":
        return RedisBlobStore()
    return SupabaseBlobStore(s.SUPABASE_URL, s.SUPABASE_SERVICE_ROLE_KEY, timeout=s.STORE_TIMEOUT_SEC)
