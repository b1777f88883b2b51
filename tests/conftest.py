import pytest

from wabridge.errors import BlobNotFoundError
from wabridge.network.base import Network
from wabridge.session.credential_store import CredentialStore
from wabridge.session.manager import SessionManager
from wabridge.settings import Settings
from wabridge.store.blob_store import BlobStore


class FakeNetwork(Network):
    """Records connects/sends; tests drive it with `await net.emit(event)`."""

    def __init__(self):
        super().__init__()
        self.connects = []
        self.sent = []
        self.disconnects = 0
        self.connect_error = None
        self.send_error = None

    async def connect(self, auth_state=None):
        self.connects.append(auth_state)
        if self.connect_error is not None:
            raise self.connect_error

    async def send(self, to, body):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((to, body))

    async def disconnect(self):
        self.disconnects += 1


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self.objects = {}
        self.calls = []
        self.fail = None

    def download(self, bucket, key):
        self.calls.append(("download", bucket, key))
        if self.fail is not None:
            raise self.fail
        if (bucket, key) not in self.objects:
            raise BlobNotFoundError(f"{bucket}/{key} not found")
        return self.objects[(bucket, key)]

    def upload(self, bucket, key, data, upsert=True):
        self.calls.append(("upload", bucket, key))
        if self.fail is not None:
            raise self.fail
        self.objects[(bucket, key)] = data

    def delete(self, bucket, key):
        self.calls.append(("delete", bucket, key))
        if self.fail is not None:
            raise self.fail
        if self.objects.pop((bucket, key), None) is None:
            raise BlobNotFoundError(f"{bucket}/{key} not found")


class RecordingRepo:
    def __init__(self):
        self.rows = []
        self.products = []
        self.fail = None
        self.products_fail = None

    def insert_message(self, record):
        if self.fail is not None:
            raise self.fail
        row = record.to_row()
        self.rows.append(row)
        return row

    def list_products(self):
        if self.products_fail is not None:
            raise self.products_fail
        return list(self.products)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def repo():
    return RecordingRepo()


@pytest.fixture
def sessions(blob_store):
    return SessionManager(CredentialStore(blob_store, "sessions", "session.json"))


@pytest.fixture
def test_settings():
    s = Settings()
    s.SUPABASE_URL = "https://example.supabase.co"
    s.SUPABASE_SERVICE_ROLE_KEY = "service-key"
    s.SESSION_BUCKET = "sessions"
    s.SESSION_FILE = "session.json"
    s.BLOB_BACKEND = "supabase"
    s.N8N_WEBHOOK_URL = "https://n8n.example/webhook/wa"
    s.FORWARD_MODE = "inline"
    s.RECONNECT_DELAY_SEC = 0.01
    s.RECONNECT_MAX_ATTEMPTS = 0
    s.CATALOG_ENABLED = False
    return s
