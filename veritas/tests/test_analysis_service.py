"""Tests for the analysis record store."""

import io
import threading
from datetime import datetime, timedelta

import pytest

from veritas.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    VeritasError,
)
from veritas.models.analysis import Analysis, Verdict
from veritas.models.blob import StoredBlob
from veritas.services.analysis_service import (
    SUB_SCORE_KEYS,
    create_analysis,
    delete_analysis,
    get_analysis,
    list_by_owner,
    patch_result,
    recent_by_owner,
    stats_by_owner,
)

BASE_URL = "http://testserver"
SCORES = {key: 60.0 for key in SUB_SCORE_KEYS}


@pytest.fixture
def new_blob(db, blob_store, png_bytes):
    def _new_blob(owner_id="owner-a"):
        target = blob_store.issue_upload_target(db, owner_id, BASE_URL)
        return blob_store.store(db, target.token, io.BytesIO(png_bytes), "image/png", "photo.png")
    return _new_blob


@pytest.fixture
def new_analysis(db, blob_store, new_blob):
    def _new_analysis(owner_id="owner-a", filename="photo.png", created_at=None):
        return create_analysis(
            db, owner_id, new_blob(owner_id), filename, blob_store, BASE_URL, created_at=created_at
        )
    return _new_analysis


class TestCreate:
    """Tests for creating analyses."""

    def test_create_is_pending(self, db, new_analysis):
        """New records start PENDING with zero confidence and no sub-scores."""
        analysis = get_analysis(db, new_analysis())
        assert analysis.verdict == Verdict.PENDING.value
        assert analysis.confidence == 0.0
        assert analysis.analysis_details is None
        assert analysis.owner_id == "owner-a"

    def test_create_resolves_image_url(self, db, new_analysis):
        analysis = get_analysis(db, new_analysis())
        assert analysis.image_url == f"{BASE_URL}/storage/{analysis.storage_id}"
        assert analysis.filename == "photo.png"

    def test_create_with_unknown_blob(self, db, blob_store):
        """An unresolvable blob fails before anything is inserted."""
        with pytest.raises(NotFoundError):
            create_analysis(db, "owner-a", "0" * 32, "photo.png", blob_store, BASE_URL)
        assert db.query(Analysis).count() == 0

    def test_create_requires_owner(self, db, blob_store, new_blob):
        with pytest.raises(UnauthenticatedError):
            create_analysis(db, None, new_blob(), "photo.png", blob_store, BASE_URL)

    def test_create_with_someone_elses_blob(self, db, blob_store, new_blob):
        """Only the uploader can attach a blob to an analysis."""
        storage_id = new_blob("owner-a")
        with pytest.raises(UnauthorizedError):
            create_analysis(db, "owner-b", storage_id, "photo.png", blob_store, BASE_URL)
        assert db.query(Analysis).count() == 0

    def test_blob_backs_one_analysis(self, db, blob_store, new_blob):
        storage_id = new_blob()
        create_analysis(db, "owner-a", storage_id, "photo.png", blob_store, BASE_URL)
        with pytest.raises(ConflictError):
            create_analysis(db, "owner-a", storage_id, "again.png", blob_store, BASE_URL)
        assert db.query(Analysis).count() == 1


class TestListing:
    """Tests for list, recent and stats."""

    def test_list_newest_first(self, db, new_analysis):
        base = datetime(2024, 1, 1)
        ids = [new_analysis(created_at=base + timedelta(minutes=i)) for i in range(3)]
        listed = [a.id for a in list_by_owner(db, "owner-a")]
        assert listed == list(reversed(ids))

    def test_list_only_own_records(self, db, new_analysis):
        new_analysis("owner-a")
        new_analysis("owner-b")
        assert len(list_by_owner(db, "owner-a")) == 1
        assert len(list_by_owner(db, "owner-b")) == 1

    def test_recent_limit(self, db, new_analysis):
        """recent(limit=2) on 5 records returns the 2 newest, newest first."""
        base = datetime(2024, 1, 1)
        ids = [new_analysis(created_at=base + timedelta(minutes=i)) for i in range(5)]
        recent = recent_by_owner(db, "owner-a", limit=2)
        assert [a.id for a in recent] == [ids[4], ids[3]]

    def test_recent_default_limit(self, db, new_analysis):
        for _ in range(12):
            new_analysis()
        assert len(recent_by_owner(db, "owner-a")) == 10

    def test_anonymous_gets_empty_results(self, db, new_analysis):
        new_analysis()
        assert list_by_owner(db, None) == []
        assert recent_by_owner(db, None, 5) == []
        assert stats_by_owner(db, None) == {"total": 0, "authentic": 0, "ai_generated": 0}

    def test_stats_exclude_pending(self, db, new_analysis):
        first, second, _pending = new_analysis(), new_analysis(), new_analysis()
        patch_result(db, first, Verdict.AUTHENTIC, 90.0, SCORES)
        patch_result(db, second, Verdict.AI_GENERATED, 95.0, SCORES)

        stats = stats_by_owner(db, "owner-a")
        assert stats == {"total": 2, "authentic": 1, "ai_generated": 1}
        assert stats["total"] == stats["authentic"] + stats["ai_generated"]


class TestPatchResult:
    """Tests for the one-time terminal patch."""

    def test_patch_sets_terminal_fields(self, db, new_analysis):
        analysis = patch_result(db, new_analysis(), Verdict.AI_GENERATED, 97.5, SCORES)
        assert analysis.verdict == "AI_GENERATED"
        assert analysis.confidence == 97.5
        assert analysis.analysis_details == SCORES

    def test_sub_scores_present_iff_terminal(self, db, new_analysis):
        done = new_analysis()
        new_analysis()
        patch_result(db, done, Verdict.AUTHENTIC, 88.0, SCORES)
        for analysis in list_by_owner(db, "owner-a"):
            assert (analysis.analysis_details is not None) == (analysis.verdict != "PENDING")

    def test_second_patch_rejected(self, db, new_analysis):
        """A verdict is written exactly once."""
        analysis_id = new_analysis()
        patch_result(db, analysis_id, Verdict.AUTHENTIC, 88.0, SCORES)
        with pytest.raises(VeritasError):
            patch_result(db, analysis_id, Verdict.AI_GENERATED, 99.0, SCORES)
        assert get_analysis(db, analysis_id).verdict == "AUTHENTIC"

    def test_stale_session_cannot_overwrite(self, db, session_factory, new_analysis):
        """A session that last saw PENDING still loses to an earlier patch."""
        analysis_id = new_analysis()
        stale = session_factory()
        try:
            assert get_analysis(stale, analysis_id).is_pending

            patch_result(db, analysis_id, Verdict.AUTHENTIC, 88.0, SCORES)

            with pytest.raises(ConflictError):
                patch_result(stale, analysis_id, Verdict.AI_GENERATED, 99.0, SCORES)
        finally:
            stale.close()

        db.expire_all()
        record = get_analysis(db, analysis_id)
        assert record.verdict == "AUTHENTIC"
        assert record.confidence == 88.0

    def test_concurrent_patches_one_wins(self, session_factory, new_analysis):
        analysis_id = new_analysis()
        barrier = threading.Barrier(2)
        outcomes = []

        def patch(verdict):
            session = session_factory()
            try:
                barrier.wait()
                patch_result(session, analysis_id, verdict, 90.0, SCORES)
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")
            finally:
                session.close()

        threads = [
            threading.Thread(target=patch, args=(verdict,))
            for verdict in (Verdict.AUTHENTIC, Verdict.AI_GENERATED)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sorted(outcomes) == ["conflict", "ok"]

    def test_patch_to_pending_rejected(self, db, new_analysis):
        with pytest.raises(VeritasError):
            patch_result(db, new_analysis(), Verdict.PENDING, 0.0, SCORES)

    def test_patch_requires_all_sub_scores(self, db, new_analysis):
        with pytest.raises(VeritasError):
            patch_result(db, new_analysis(), Verdict.AUTHENTIC, 90.0, {"artifact_score": 1.0})

    def test_patch_missing_record(self, db):
        with pytest.raises(NotFoundError):
            patch_result(db, "0" * 32, Verdict.AUTHENTIC, 90.0, SCORES)


class TestDelete:
    """Tests for deleting analyses and their blobs."""

    def test_owner_delete_removes_record_and_blob(self, db, blob_store, new_analysis):
        analysis_id = new_analysis()
        storage_id = get_analysis(db, analysis_id).storage_id

        delete_analysis(db, analysis_id, "owner-a", blob_store)

        with pytest.raises(NotFoundError):
            get_analysis(db, analysis_id)
        with pytest.raises(NotFoundError):
            blob_store.path_for(db, storage_id)
        assert db.get(StoredBlob, storage_id) is None

    def test_other_owner_cannot_delete(self, db, blob_store, new_analysis):
        """Unauthorized delete leaves record and blob untouched."""
        analysis_id = new_analysis("owner-a")
        storage_id = get_analysis(db, analysis_id).storage_id

        with pytest.raises(UnauthorizedError):
            delete_analysis(db, analysis_id, "owner-b", blob_store)

        assert get_analysis(db, analysis_id).owner_id == "owner-a"
        assert blob_store.path_for(db, storage_id).exists()

    def test_delete_missing_record(self, db, blob_store):
        with pytest.raises(NotFoundError):
            delete_analysis(db, "0" * 32, "owner-a", blob_store)

    def test_delete_requires_caller(self, db, blob_store, new_analysis):
        with pytest.raises(UnauthenticatedError):
            delete_analysis(db, new_analysis(), None, blob_store)
