import io
import os
import random
import tempfile

# Keep the app's own engine and blob dir away from the working tree
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="veritas-blobs-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from veritas.config import settings
from veritas.database import Base, get_db, make_engine
from veritas.models.analysis import Analysis  # noqa: F401
from veritas.models.blob import StoredBlob  # noqa: F401
from veritas.models.user import User  # noqa: F401
from veritas.services.blob_service import BlobStore
from veritas.services.scoring_service import ScoringQueue
from veritas.api.deps import get_blob_store, get_scoring_queue
from veritas.api.security import rate_limiter
from veritas.api.server import app
from veritas.utils.logging_config import metrics

# Cheap hashes for tests
settings.bcrypt_rounds = 4

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FixedRandom:
    """Random source that replays a fixed list of ``random()`` values."""

    def __init__(self, values):
        self._values = list(values)

    def random(self):
        return self._values.pop(0)


@pytest.fixture
def fixed_random():
    return FixedRandom


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture(autouse=True)
def reset_shared_state():
    rate_limiter.reset()
    metrics.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file (shared with scoring threads)."""
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(tmp_path / "blobs")


@pytest.fixture
def scoring_queue(session_factory):
    """Scoring pool with no artificial delay and a seeded random source."""
    queue = ScoringQueue(
        session_factory,
        rng=random.Random(1234),
        sleep=lambda seconds: None,
        max_workers=4,
    )
    yield queue
    queue.shutdown(wait=True)


@pytest.fixture
def client(session_factory, blob_store, scoring_queue):
    """FastAPI test client wired to the temporary database, blobs and pool."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_scoring_queue] = lambda: scoring_queue
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    """Sign up a user and return (user_id, auth headers)."""
    counter = {"n": 0}

    def _make_user(email=None, password="secret123"):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        resp = client.post("/auth/signup", json={"email": email, "password": password})
        assert resp.status_code == 201, resp.text
        data = resp.json()
        return data["user_id"], {"Authorization": f"Bearer {data['token']}"}

    return _make_user


@pytest.fixture
def upload_png(client):
    """Run upload-url + upload for the given headers; returns the storage id."""

    def _upload(headers, filename="photo.png", content=PNG_BYTES, content_type="image/png"):
        target = client.post("/analyses/upload-url", headers=headers)
        assert target.status_code == 200, target.text
        resp = client.post(
            target.json()["upload_url"],
            files={"file": (filename, content, content_type)},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["storage_id"]

    return _upload


@pytest.fixture
def stored_blob(db, blob_store):
    """A blob already in the store, issued to 'owner-a'."""
    target = blob_store.issue_upload_target(db, "owner-a", "http://testserver")
    return blob_store.store(db, target.token, io.BytesIO(PNG_BYTES), "image/png", "photo.png")
