"""Document store over SQLite.

Provides:
- Schema-validated CRUD per collection
- Selector queries and live subscriptions
- Migration of persisted documents on open
- Local-change tracking for push replication

Each mutation runs in its own transaction, so writes are atomic per
document. There are no multi-document transactions.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Literal

import structlog

from edusync.db.database import delete_db, get_db, init_db, next_seq
from edusync.db.migrations import migrate_document
from edusync.db.query import Selector, matches, sort_documents, validate_selector
from edusync.db.schemas import COLLECTIONS, SCHEMA_VERSIONS, get_model, validate_document
from edusync.db.subscriptions import Subscription
from edusync.errors import (
    DuplicateKeyError,
    MigrationError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

Document = dict[str, Any]
Origin = Literal["local", "remote"]


class DocumentStore:
    """Local-first store for users, progress, content and classes.

    Use DocumentStore.open() (or open_store()) rather than the constructor
    so that migrations run before any query can see the data.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._subscriptions: dict[str, list[Subscription]] = {c: [] for c in COLLECTIONS}

    # -------------------------------------------------------------------------
    # OPEN / RESET
    # -------------------------------------------------------------------------

    @classmethod
    def open(cls, db_path: Path) -> DocumentStore:
        """Open (creating if needed) and migrate the store.

        Raises:
            MigrationError: If any document fails to migrate. Nothing is
                committed in that case; recover with reset_store().
        """
        init_db(db_path)
        store = cls(db_path)
        store._run_migrations()
        logger.info("store.opened", path=str(db_path))
        return store

    def _run_migrations(self) -> None:
        migrated: dict[str, int] = {}

        with get_db(self.db_path) as conn:
            for collection in COLLECTIONS:
                target = SCHEMA_VERSIONS[collection]
                rows = conn.execute(
                    """
                    SELECT id, schema_version, body FROM documents
                    WHERE collection = ? AND schema_version < ?
                    """,
                    (collection, target),
                ).fetchall()

                for row in rows:
                    try:
                        old_doc = json.loads(row["body"])
                    except json.JSONDecodeError as e:
                        raise MigrationError(
                            collection, row["id"], row["schema_version"], f"corrupt body: {e}"
                        ) from e

                    new_doc = migrate_document(collection, old_doc, row["schema_version"])
                    try:
                        normalized = validate_document(collection, new_doc)
                    except ValidationError as e:
                        raise MigrationError(collection, row["id"], target, str(e)) from e

                    conn.execute(
                        """
                        UPDATE documents SET body = ?, schema_version = ?
                        WHERE collection = ? AND id = ?
                        """,
                        (json.dumps(normalized), target, collection, row["id"]),
                    )

                if rows:
                    migrated[collection] = len(rows)

        if migrated:
            logger.info("store.migrated", counts=migrated)

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    def find_one(self, collection: str, doc_id: str) -> Document | None:
        """Get a document by id, or None if it doesn't exist."""
        get_model(collection)
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()

        if row is None:
            return None
        return json.loads(row["body"])

    def find(
        self,
        collection: str,
        selector: Selector | None = None,
        sort_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        """Find documents matching a selector.

        Args:
            collection: Collection name
            selector: Field conditions (see edusync.db.query); None = all
            sort_by: Optional field to sort by
            descending: Sort direction
            limit: Maximum number of documents returned

        Returns:
            Matching documents (empty list if none)
        """
        get_model(collection)
        validate_selector(selector)

        with get_db(self.db_path) as conn:
            doc_id = (selector or {}).get("id")
            if isinstance(doc_id, str):
                rows = conn.execute(
                    "SELECT body FROM documents WHERE collection = ? AND id = ?",
                    (collection, doc_id),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT body FROM documents WHERE collection = ? ORDER BY seq",
                    (collection,),
                ).fetchall()

        docs = [json.loads(row["body"]) for row in rows]
        docs = [doc for doc in docs if matches(doc, selector)]
        docs = sort_documents(docs, sort_by, descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def count(self, collection: str, selector: Selector | None = None) -> int:
        """Count documents matching a selector."""
        return len(self.find(collection, selector))

    def changed_since(
        self,
        collection: str,
        checkpoint: int,
    ) -> tuple[list[Document], int]:
        """Get documents written locally after a sequence checkpoint.

        Documents that arrived through replication (origin 'remote') are
        excluded so they are not pushed back.

        Returns:
            (documents, new_checkpoint)
        """
        get_model(collection)
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT body, seq FROM documents
                WHERE collection = ? AND seq > ? AND origin = 'local'
                ORDER BY seq
                """,
                (collection, checkpoint),
            ).fetchall()

        if not rows:
            return [], checkpoint
        return [json.loads(row["body"]) for row in rows], rows[-1]["seq"]

    # -------------------------------------------------------------------------
    # WRITES
    # -------------------------------------------------------------------------

    def insert(self, collection: str, doc: Document, origin: Origin = "local") -> Document:
        """Insert a new document.

        Returns:
            The stored (normalized) document

        Raises:
            ValidationError: If the document violates the schema
            DuplicateKeyError: If the id already exists
        """
        normalized = validate_document(collection, doc)

        try:
            with get_db(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO documents (collection, id, schema_version, body, seq, origin)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        collection,
                        normalized["id"],
                        SCHEMA_VERSIONS[collection],
                        json.dumps(normalized),
                        next_seq(conn),
                        origin,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateKeyError(collection, normalized["id"]) from e

        logger.debug("store.inserted", collection=collection, id=normalized["id"])
        self._notify(collection, None, normalized)
        return normalized

    def patch(
        self,
        collection: str,
        doc_id: str,
        partial: Document,
        origin: Origin = "local",
    ) -> Document:
        """Merge fields into an existing document.

        A field set to None is removed from the document.

        Raises:
            NotFoundError: If the document doesn't exist
            ValidationError: If the merged document violates the schema
        """
        if "id" in partial and partial["id"] != doc_id:
            raise ValidationError(collection, ["id: cannot be changed"], doc_id=doc_id)

        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
            if row is None:
                raise NotFoundError(collection, doc_id)

            before = json.loads(row["body"])
            normalized = validate_document(collection, {**before, **partial})
            self._write(conn, collection, normalized, origin)

        logger.debug("store.patched", collection=collection, id=doc_id, fields=sorted(partial))
        self._notify(collection, before, normalized)
        return normalized

    def upsert(self, collection: str, doc: Document, origin: Origin = "local") -> Document:
        """Insert, or fully overwrite an existing document with the same id.

        Raises:
            ValidationError: If the document violates the schema
        """
        normalized = validate_document(collection, doc)

        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, normalized["id"]),
            ).fetchone()
            before = json.loads(row["body"]) if row else None
            self._write(conn, collection, normalized, origin)

        logger.debug(
            "store.upserted",
            collection=collection,
            id=normalized["id"],
            created=before is None,
        )
        self._notify(collection, before, normalized)
        return normalized

    def remove(self, collection: str, doc_id: str) -> bool:
        """Delete a document.

        Returns:
            True if deleted, False if it was already absent
        """
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
            if row is None:
                return False
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )

        logger.debug("store.removed", collection=collection, id=doc_id)
        self._notify(collection, json.loads(row["body"]), None)
        return True

    def _write(
        self,
        conn: sqlite3.Connection,
        collection: str,
        doc: Document,
        origin: Origin,
    ) -> None:
        conn.execute(
            """
            INSERT INTO documents (collection, id, schema_version, body, seq, origin)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(collection, id) DO UPDATE SET
                schema_version = excluded.schema_version,
                body = excluded.body,
                seq = excluded.seq,
                origin = excluded.origin,
                written_at = datetime('now')
            """,
            (
                collection,
                doc["id"],
                SCHEMA_VERSIONS[collection],
                json.dumps(doc),
                next_seq(conn),
                origin,
            ),
        )

    # -------------------------------------------------------------------------
    # SUBSCRIPTIONS
    # -------------------------------------------------------------------------

    def subscribe(self, collection: str, selector: Selector | None = None) -> Subscription:
        """Subscribe to the live result set of a query.

        The current result set is emitted immediately.
        """
        get_model(collection)
        validate_selector(selector)

        subscription = Subscription(collection, selector, self._unsubscribe)
        self._subscriptions[collection].append(subscription)
        subscription.emit(self.find(collection, subscription.selector))
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions[subscription.collection]
        if subscription in subs:
            subs.remove(subscription)

    def _notify(self, collection: str, before: Document | None, after: Document | None) -> None:
        for subscription in list(self._subscriptions[collection]):
            touched = (before is not None and matches(before, subscription.selector)) or (
                after is not None and matches(after, subscription.selector)
            )
            if touched and not subscription.cancelled:
                subscription.emit(self.find(collection, subscription.selector))


def open_store(db_path: Path) -> DocumentStore:
    """Open the store at db_path, running pending migrations."""
    return DocumentStore.open(db_path)


def reset_store(db_path: Path) -> DocumentStore:
    """Destructive reset: wipe the database and open a fresh store.

    This is the only supported recovery from MigrationError.
    """
    delete_db(db_path)
    logger.warning("store.reset", path=str(db_path))
    return DocumentStore.open(db_path)
