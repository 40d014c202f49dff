"""Tests for schema migration chains and migration on open."""

import json

import pytest

from edusync.db.database import get_db, init_db
from edusync.db.migrations import MIGRATION_CHAINS, generate_join_code, migrate_document
from edusync.db.schemas import JOIN_CODE_ALPHABET, SCHEMA_VERSIONS, validate_document
from edusync.db.store import DocumentStore, reset_store
from edusync.errors import MigrationError


def _write_raw(db_path, collection, doc, version):
    """Persist a document as an older app version would have."""
    init_db(db_path)
    with get_db(db_path) as conn:
        conn.execute(
            "INSERT INTO documents (collection, id, schema_version, body) VALUES (?, ?, ?, ?)",
            (collection, doc["id"], version, json.dumps(doc)),
        )


LEGACY_USER = {
    "id": "u1",
    "name": "Ravi",
    "avatarId": "🐯",
    "pinHash": "h",
    "createdAt": 1,
}


class TestUserChain:
    """Tests for the users migration chain (v0 -> v7)."""

    def test_v0_user_reaches_current_shape(self):
        """A v0 user gets role, medium, phone and stays valid."""
        migrated = migrate_document("users", LEGACY_USER, 0)
        assert migrated["role"] == "student"
        assert migrated["medium"] == "english"
        assert migrated["phone"] == ""
        validate_document("users", migrated)

    def test_existing_role_is_kept(self):
        """Teachers are not demoted by the role default."""
        migrated = migrate_document("users", {**LEGACY_USER, "role": "teacher"}, 0)
        assert migrated["role"] == "teacher"

    def test_class_id_normalized_to_digits(self):
        """'10th' becomes '10' at step 6."""
        migrated = migrate_document("users", {**LEGACY_USER, "role": "student", "classId": "10th"}, 5)
        assert migrated["classId"] == "10"

    def test_migration_does_not_mutate_input(self):
        """Transforms are pure."""
        doc = dict(LEGACY_USER)
        migrate_document("users", doc, 0)
        assert doc == LEGACY_USER

    def test_missing_required_field_fails_with_step(self):
        """A v0 user without pinHash fails at the first step."""
        broken = {k: v for k, v in LEGACY_USER.items() if k != "pinHash"}
        with pytest.raises(MigrationError) as exc_info:
            migrate_document("users", broken, 0)
        assert exc_info.value.step == 1

    def test_newer_version_rejected(self):
        """A document from a newer schema cannot be migrated down."""
        with pytest.raises(MigrationError):
            migrate_document("users", LEGACY_USER, 99)


class TestContentChain:
    """Tests for the content migration chain (v0 -> v6)."""

    def test_lesson_gets_translations_and_attachments(self):
        """Lessons gain empty translations/attachments inside data."""
        doc = {"id": "c1", "type": "lesson", "title": "T", "createdAt": 1, "data": {"content": "<p>x</p>"}}
        migrated = migrate_document("content", doc, 0)
        assert migrated["data"]["translations"] == {}
        assert migrated["data"]["attachments"] == []
        assert migrated["data"]["content"] == "<p>x</p>"
        assert migrated["medium"] == "english"

    @pytest.mark.parametrize(
        "raw,expected",
        [("2", 2), (1.0, 1), ("abc", 0), (None, 0), (float("nan"), 0)],
    )
    def test_correct_answer_coerced_to_int(self, raw, expected):
        """Quiz answers become integers; garbage becomes 0."""
        doc = {
            "id": "q1",
            "type": "quiz",
            "title": "Q",
            "createdAt": 1,
            "data": {"questions": [{"id": "x", "text": "?", "options": ["a", "b", "c"], "correctAnswer": raw}]},
        }
        migrated = migrate_document("content", doc, 4)
        assert migrated["data"]["questions"][0]["correctAnswer"] == expected

    @pytest.mark.parametrize("raw,expected", [(7, 2), ("-1", 0), ("2", 2)])
    def test_out_of_range_answer_clamped(self, raw, expected):
        """Answers pointing past the options are pulled back into range."""
        doc = {
            "id": "q1",
            "type": "quiz",
            "title": "Q",
            "createdAt": 1,
            "data": {"questions": [{"id": "x", "text": "?", "options": ["a", "b", "c"], "correctAnswer": raw}]},
        }
        migrated = migrate_document("content", doc, 4)
        assert migrated["data"]["questions"][0]["correctAnswer"] == expected
        validate_document("content", migrated)

    @pytest.mark.parametrize("raw,expected", [("Marathi", "marathi"), ("hindi", "english"), ("", "english")])
    def test_legacy_medium_normalized(self, raw, expected):
        doc = {"id": "c1", "type": "subject", "title": "T", "createdAt": 1, "medium": raw}
        assert migrate_document("content", doc, 5)["medium"] == expected


class TestClassChain:
    """Tests for the classes migration chain (v0 -> v3)."""

    def test_code_generated(self):
        """Classes without a code get one from the join-code alphabet."""
        doc = {"id": "k1", "name": "7A", "teacherId": "t1", "createdAt": 1}
        migrated = migrate_document("classes", doc, 0)
        assert len(migrated["code"]) == 6
        assert set(migrated["code"]) <= set(JOIN_CODE_ALPHABET)

    def test_existing_code_kept_at_step_three(self):
        """Step 3 only fills a missing code."""
        doc = {"id": "k1", "name": "7A", "teacherId": "t1", "createdAt": 1, "code": "ABCDEF"}
        assert migrate_document("classes", doc, 2)["code"] == "ABCDEF"


class TestChainsComplete:
    """Every chain reaches the declared schema version."""

    def test_chain_lengths_match_versions(self):
        for collection, version in SCHEMA_VERSIONS.items():
            assert len(MIGRATION_CHAINS[collection]) == version

    def test_join_code_shape(self):
        code = generate_join_code()
        assert len(code) == 6
        assert not set(code) & set("IO01")


class TestMigrationOnOpen:
    """Tests for migrations run by DocumentStore.open()."""

    def test_legacy_documents_visible_in_current_shape(self, db_path):
        """Documents written at v0 are upgraded before the first query."""
        _write_raw(db_path, "users", LEGACY_USER, 0)

        store = DocumentStore.open(db_path)
        user = store.find_one("users", "u1")
        assert user["role"] == "student"
        assert user["medium"] == "english"

        with get_db(db_path) as conn:
            row = conn.execute("SELECT schema_version FROM documents WHERE id = 'u1'").fetchone()
        assert row["schema_version"] == SCHEMA_VERSIONS["users"]

    def test_legacy_quiz_and_unknown_medium_open_cleanly(self, db_path):
        """Out-of-range answers and unknown mediums do not abort the open."""
        _write_raw(db_path, "users", {**LEGACY_USER, "medium": "Hindi"}, 0)
        _write_raw(
            db_path,
            "content",
            {
                "id": "q1",
                "type": "quiz",
                "title": "Q",
                "createdAt": 1,
                "data": {"questions": [{"id": "x", "text": "?", "options": ["a", "b"], "correctAnswer": "5"}]},
            },
            0,
        )

        store = DocumentStore.open(db_path)

        assert store.find_one("users", "u1")["medium"] == "english"
        assert store.find_one("content", "q1")["data"]["questions"][0]["correctAnswer"] == 1

    def test_failed_migration_blocks_open_and_commits_nothing(self, db_path):
        """One bad document aborts the whole open; good ones stay at v0."""
        _write_raw(db_path, "users", LEGACY_USER, 0)
        _write_raw(db_path, "users", {"id": "bad", "name": "X", "createdAt": 1}, 0)

        with pytest.raises(MigrationError):
            DocumentStore.open(db_path)

        with get_db(db_path) as conn:
            row = conn.execute("SELECT schema_version FROM documents WHERE id = 'u1'").fetchone()
        assert row["schema_version"] == 0

    def test_reset_recovers_from_failed_migration(self, db_path):
        """reset_store is the recovery path."""
        _write_raw(db_path, "users", {"id": "bad", "name": "X", "createdAt": 1}, 0)
        with pytest.raises(MigrationError):
            DocumentStore.open(db_path)

        store = reset_store(db_path)
        assert store.count("users") == 0
