from typing import Optional

from wabridge.errors import BlobNotFoundError
from wabridge.store.blob_store import BlobStore


class CredentialStore:
    """The single session object (bucket, key) in a blob store."""

    def __init__(self, blob_store: BlobStore, bucket: str, key: str):
        self.blob_store = blob_store
        self.bucket = bucket
        self.key = key

    def download(self) -> Optional[bytes]:
        try:
            return self.blob_store.download(self.bucket, self.key)
        except BlobNotFoundError:
            return None

    def upload(self, raw: bytes) -> None:
        self.blob_store.upload(self.bucket, self.key, raw, upsert=True)

    def delete(self) -> bool:
        """False when there was nothing to delete."""
        try:
            self.blob_store.delete(self.bucket, self.key)
        except BlobNotFoundError:
            return False
        return True
