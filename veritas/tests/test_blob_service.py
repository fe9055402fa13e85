"""Tests for the local blob store."""

import io

import pytest

from veritas.exceptions import NotFoundError, UnauthenticatedError, UploadRejectedError
from veritas.models.blob import StoredBlob
from veritas.services.blob_service import BlobStore, is_image_content_type

BASE_URL = "http://testserver"


class TestUploadTargets:
    """Tests for issuing and consuming upload targets."""

    def test_issue_requires_owner(self, db, blob_store):
        with pytest.raises(UnauthenticatedError):
            blob_store.issue_upload_target(db, None, BASE_URL)

    def test_issue_builds_upload_url(self, db, blob_store):
        target = blob_store.issue_upload_target(db, "owner-a", BASE_URL + "/")
        assert target.upload_url == f"{BASE_URL}/storage/upload/{target.token}"

    def test_store_persists_bytes(self, db, blob_store, png_bytes):
        target = blob_store.issue_upload_target(db, "owner-a", BASE_URL)
        storage_id = blob_store.store(db, target.token, io.BytesIO(png_bytes), "image/png", "a.png")

        assert blob_store.path_for(db, storage_id).read_bytes() == png_bytes
        blob = db.get(StoredBlob, storage_id)
        assert blob.size == len(png_bytes)
        assert blob.content_type == "image/png"
        assert len(blob.sha256) == 64

    def test_token_is_single_use(self, db, blob_store, png_bytes):
        target = blob_store.issue_upload_target(db, "owner-a", BASE_URL)
        blob_store.store(db, target.token, io.BytesIO(png_bytes), "image/png")
        with pytest.raises(UploadRejectedError):
            blob_store.store(db, target.token, io.BytesIO(png_bytes), "image/png")

    def test_unknown_token_rejected(self, db, blob_store, png_bytes):
        with pytest.raises(UploadRejectedError):
            blob_store.store(db, "nope", io.BytesIO(png_bytes), "image/png")

    def test_expired_token_rejected(self, db, tmp_path, png_bytes):
        store = BlobStore(tmp_path / "expiring", upload_ttl=0)
        target = store.issue_upload_target(db, "owner-a", BASE_URL)
        with pytest.raises(UploadRejectedError):
            store.store(db, target.token, io.BytesIO(png_bytes), "image/png")

    def test_non_image_rejected(self, db, blob_store):
        target = blob_store.issue_upload_target(db, "owner-a", BASE_URL)
        with pytest.raises(UploadRejectedError):
            blob_store.store(db, target.token, io.BytesIO(b"%PDF-1.4"), "application/pdf")

    def test_oversized_rejected_and_cleaned_up(self, db, tmp_path):
        store = BlobStore(tmp_path / "small", max_bytes=4)
        target = store.issue_upload_target(db, "owner-a", BASE_URL)
        with pytest.raises(UploadRejectedError):
            store.store(db, target.token, io.BytesIO(b"123456789"), "image/png")
        assert list((tmp_path / "small").iterdir()) == []

    def test_empty_rejected(self, db, blob_store):
        target = blob_store.issue_upload_target(db, "owner-a", BASE_URL)
        with pytest.raises(UploadRejectedError):
            blob_store.store(db, target.token, io.BytesIO(b""), "image/png")

    def test_content_type_check(self):
        assert is_image_content_type("image/jpeg")
        assert is_image_content_type("IMAGE/PNG")
        assert not is_image_content_type("text/plain")
        assert not is_image_content_type(None)


class TestResolveAndDelete:
    """Tests for URL resolution and deletion."""

    def test_resolve_url(self, db, blob_store, stored_blob):
        assert blob_store.resolve_url(db, stored_blob, BASE_URL) == f"{BASE_URL}/storage/{stored_blob}"

    def test_resolve_unknown(self, db, blob_store):
        assert blob_store.resolve_url(db, "a" * 32, BASE_URL) is None

    def test_resolve_rejects_path_like_ids(self, db, blob_store):
        assert blob_store.resolve_url(db, "../etc/passwd", BASE_URL) is None

    def test_delete_removes_file_and_metadata(self, db, blob_store, stored_blob):
        path = blob_store.path_for(db, stored_blob)
        blob_store.delete(db, stored_blob)
        assert not path.exists()
        assert db.get(StoredBlob, stored_blob) is None
        with pytest.raises(NotFoundError):
            blob_store.path_for(db, stored_blob)

    def test_delete_unknown_is_noop(self, db, blob_store):
        blob_store.delete(db, "b" * 32)
        blob_store.delete(db, "../../outside")
