"""Tests for the document store (CRUD, queries, change tracking)."""

import json

import pytest

from edusync.db.database import get_db
from edusync.db.store import DocumentStore, open_store, reset_store
from edusync.errors import DuplicateKeyError, NotFoundError, ValidationError


class TestInsertAndFind:
    """Tests for insert, find_one and find."""

    def test_insert_returns_normalized_document(self, store):
        """Insert returns camelCase keys and drops None values."""
        doc = store.insert(
            "users",
            {
                "id": "u1",
                "name": "Asha",
                "avatar_id": "🦊",
                "pinHash": "abc",
                "role": "student",
                "createdAt": 1,
                "phone": None,
            },
        )
        assert doc["avatarId"] == "🦊"
        assert "avatar_id" not in doc
        assert "phone" not in doc

    def test_find_one_roundtrip(self, store, make_user):
        """find_one returns the stored document."""
        user = make_user(id="u1")
        assert store.find_one("users", "u1") == user

    def test_find_one_missing_returns_none(self, store):
        """Unknown id gives None rather than an error."""
        assert store.find_one("users", "nope") is None

    def test_insert_duplicate_id_raises(self, store, make_user):
        """Second insert with the same id raises DuplicateKeyError."""
        make_user(id="u1")
        with pytest.raises(DuplicateKeyError):
            make_user(id="u1")

    def test_insert_invalid_document_raises(self, store):
        """Missing required fields are rejected and nothing is written."""
        with pytest.raises(ValidationError) as exc_info:
            store.insert("users", {"id": "u1", "name": "Asha"})
        assert "pinHash" in str(exc_info.value) or "pin_hash" in str(exc_info.value)
        assert store.count("users") == 0

    def test_stars_out_of_range_rejected(self, store, make_user):
        """Progress stars must be within 0..3."""
        make_user(id="u1")
        with pytest.raises(ValidationError):
            store.insert(
                "progress",
                {"id": "p1", "userId": "u1", "levelId": "L1", "score": 50, "stars": 4, "timestamp": 1},
            )

    def test_unknown_collection_raises(self, store):
        """Unknown collections are a programming error."""
        with pytest.raises(ValueError):
            store.find("badges")


class TestSelectors:
    """Tests for find() selectors, sorting and limits."""

    def test_equality_and_empty_result(self, store, make_user, make_progress):
        """Equality selector filters; no match gives an empty list."""
        make_user(id="u1")
        make_progress("u1", "L1", 80, 2)
        make_progress("u1", "L2", 40, 1)

        assert len(store.find("progress", {"userId": "u1"})) == 2
        assert store.find("progress", {"userId": "u2"}) == []

    def test_range_operators(self, store, make_user, make_progress):
        """$gte and $lt combine on one field."""
        make_user(id="u1")
        for i, score in enumerate([10, 50, 70, 90]):
            make_progress("u1", f"L{i}", score, 1)

        rows = store.find("progress", {"score": {"$gte": 50, "$lt": 90}})
        assert sorted(r["score"] for r in rows) == [50, 70]

    def test_in_and_ne_operators(self, store, make_content):
        """$in and $ne work on string fields."""
        make_content("quiz", "Q")
        make_content("lesson", "L")
        make_content("subject", "S")

        assert store.count("content", {"type": {"$in": ["quiz", "lesson"]}}) == 2
        assert store.count("content", {"type": {"$ne": "subject"}}) == 2

    def test_unknown_operator_rejected(self, store):
        """Unsupported operators raise ValueError."""
        with pytest.raises(ValueError, match="regex"):
            store.find("content", {"title": {"$regex": "^F"}})

    def test_sort_and_limit(self, store, make_user, make_progress):
        """sort_by/descending/limit are applied after filtering."""
        make_user(id="u1")
        for i, score in enumerate([30, 90, 60]):
            make_progress("u1", f"L{i}", score, 1)

        rows = store.find("progress", sort_by="score", descending=True, limit=2)
        assert [r["score"] for r in rows] == [90, 60]

    def test_dotted_field(self, store, make_content):
        """Dotted paths reach nested data."""
        make_content("lesson", "A", data={"content": "hello"})
        make_content("lesson", "B", data={"content": "bye"})

        rows = store.find("content", {"data.content": "hello"})
        assert [r["title"] for r in rows] == ["A"]


class TestPatchUpsertRemove:
    """Tests for patch, upsert and remove."""

    def test_patch_merges_fields(self, store, make_user):
        """Patch changes only the given fields."""
        make_user(id="u1", name="Asha")
        patched = store.patch("users", "u1", {"phone": "555"})
        assert patched["phone"] == "555"
        assert patched["name"] == "Asha"

    def test_patch_none_removes_field(self, store, make_user):
        """A None value removes the field."""
        make_user(id="u1", phone="555")
        patched = store.patch("users", "u1", {"phone": None})
        assert "phone" not in patched

    def test_patch_missing_document_raises(self, store):
        """Patching an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.patch("users", "ghost", {"name": "x"})

    def test_patch_cannot_change_id(self, store, make_user):
        """The id is immutable."""
        make_user(id="u1")
        with pytest.raises(ValidationError):
            store.patch("users", "u1", {"id": "u2"})

    def test_patch_invalid_leaves_document_untouched(self, store, make_user, make_progress):
        """A patch that fails validation writes nothing."""
        make_user(id="u1")
        row = make_progress("u1", "L1", 50, 1)
        with pytest.raises(ValidationError):
            store.patch("progress", row["id"], {"stars": 9})
        assert store.find_one("progress", row["id"])["stars"] == 1

    def test_upsert_inserts_then_overwrites(self, store, make_content):
        """Upsert creates, then fully replaces by id."""
        store.upsert("content", {"id": "c1", "type": "quiz", "title": "Old", "createdAt": 1})
        store.upsert("content", {"id": "c1", "type": "quiz", "title": "New", "createdAt": 2})

        doc = store.find_one("content", "c1")
        assert doc["title"] == "New"
        assert store.count("content") == 1

    def test_remove(self, store, make_content):
        """Remove returns True once, then False."""
        item = make_content()
        assert store.remove("content", item["id"]) is True
        assert store.remove("content", item["id"]) is False
        assert store.find_one("content", item["id"]) is None


class TestChangeTracking:
    """Tests for changed_since() push checkpoints."""

    def test_changed_since_returns_local_writes_in_order(self, store, make_user):
        """Local writes after the checkpoint come back with a new checkpoint."""
        make_user(id="u1")
        make_user(id="u2")

        docs, checkpoint = store.changed_since("users", 0)
        assert [d["id"] for d in docs] == ["u1", "u2"]

        again, same = store.changed_since("users", checkpoint)
        assert again == []
        assert same == checkpoint

    def test_patch_moves_document_past_checkpoint(self, store, make_user):
        """Patched documents show up again after the checkpoint."""
        make_user(id="u1")
        _, checkpoint = store.changed_since("users", 0)

        store.patch("users", "u1", {"phone": "1"})
        docs, _ = store.changed_since("users", checkpoint)
        assert [d["id"] for d in docs] == ["u1"]

    def test_remote_writes_are_not_tracked(self, store):
        """Documents written with origin 'remote' are never pushed back."""
        store.upsert(
            "users",
            {"id": "r1", "name": "R", "avatarId": "x", "pinHash": "h", "role": "student", "createdAt": 1},
            origin="remote",
        )
        docs, checkpoint = store.changed_since("users", 0)
        assert docs == []
        assert checkpoint == 0


class TestOpenAndReset:
    """Tests for open_store and reset_store."""

    def test_documents_persist_across_opens(self, db_path, make_user):
        """A reopened store sees earlier writes."""
        make_user(id="u1")
        reopened = open_store(db_path)
        assert reopened.find_one("users", "u1") is not None

    def test_reset_wipes_documents(self, db_path, make_user):
        """reset_store returns an empty store."""
        make_user(id="u1")
        fresh = reset_store(db_path)
        assert isinstance(fresh, DocumentStore)
        assert fresh.count("users") == 0

    def test_stored_body_is_json(self, store, db_path, make_user):
        """Bodies are stored as JSON text at the current schema version."""
        make_user(id="u1")
        with get_db(db_path) as conn:
            row = conn.execute(
                "SELECT body, schema_version FROM documents WHERE id = 'u1'"
            ).fetchone()
        assert json.loads(row["body"])["id"] == "u1"
        assert row["schema_version"] == 7
