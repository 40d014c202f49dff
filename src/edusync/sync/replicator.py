"""Network replication with the class server.

Protocol (CouchDB-compatible subset):
- Pull: GET  {base}/{collection}/_all_docs?include_docs=true -> {"rows": [{"doc": {...}}]}
- Push: POST {base}/{collection}/_bulk_docs with {"docs": [...]}

Only users and progress are pushed; content and classes are authored on
the teacher device and flow down only. Pulled content is restricted to
the active user's class. The push response body is ignored.

Transport failures never propagate: each request is retried with
exponential backoff, then the failure is logged and recorded in the
SyncReport.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from edusync.config.app_config import SyncSettings
from edusync.db.schemas import CONTENT, PROGRESS, USERS
from edusync.db.store import DocumentStore
from edusync.errors import NetworkError
from edusync.state.device_state import DeviceState
from edusync.sync.merge import merge_remote_documents

logger = structlog.get_logger(__name__)

PUSH_COLLECTIONS = (USERS, PROGRESS)


# =============================================================================
# REPORTS
# =============================================================================


@dataclass
class CollectionReport:
    """Per-collection outcome of one replication round."""

    collection: str
    pulled: int = 0
    merged: int = 0
    rejected: int = 0
    pushed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "pulled": self.pulled,
            "merged": self.merged,
            "rejected": self.rejected,
            "pushed": self.pushed,
            "errors": self.errors,
        }


@dataclass
class SyncReport:
    """Outcome of Replicator.sync_once()."""

    remote_url: str
    started_at: str
    collections: list[CollectionReport] = field(default_factory=list)
    finished_at: str | None = None

    @property
    def ok(self) -> bool:
        return not any(c.errors for c in self.collections)

    @property
    def total_pulled(self) -> int:
        return sum(c.pulled for c in self.collections)

    @property
    def total_pushed(self) -> int:
        return sum(c.pushed for c in self.collections)

    def get(self, collection: str) -> CollectionReport | None:
        for report in self.collections:
            if report.collection == collection:
                return report
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "remote_url": self.remote_url,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "ok": self.ok,
            "collections": [c.to_dict() for c in self.collections],
        }


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# REPLICATOR
# =============================================================================


class Replicator:
    """Pull/push replication between the local store and a class server.

    Usage:
        async with Replicator(store, state, "http://192.168.1.5:5984") as rep:
            report = await rep.sync_once()
    """

    def __init__(
        self,
        store: DocumentStore,
        state: DeviceState,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        settings: SyncSettings | None = None,
    ):
        if not base_url:
            raise ValueError("Replicator needs a remote base URL")

        self.store = store
        self.state = state
        self.base_url = base_url.rstrip("/")
        self.settings = settings or SyncSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.settings.timeout)

    async def close(self) -> None:
        """Close the HTTP client if this replicator created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Replicator:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def _request(
        self, method: str, path: str, parse_json: bool = False, **kwargs: Any
    ) -> Any:
        """Send a request with bounded retries.

        Returns:
            The decoded JSON body if parse_json, else the response

        Raises:
            NetworkError: After the last attempt fails
        """
        url = f"{self.base_url}/{path}"
        attempts = self.settings.max_retries + 1
        last_error = ""

        for attempt in range(attempts):
            try:
                response = await self._client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json() if parse_json else response
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
            except ValueError as e:
                last_error = f"invalid JSON response: {e}"

            logger.warning(
                "replicator.request_failed",
                method=method,
                url=url,
                attempt=attempt + 1,
                attempts=attempts,
                error=last_error,
            )
            if attempt + 1 < attempts and self.settings.backoff_seconds > 0:
                await asyncio.sleep(self.settings.backoff_seconds * (2**attempt))

        raise NetworkError(last_error, url=url)

    # -------------------------------------------------------------------------
    # PULL / PUSH
    # -------------------------------------------------------------------------

    def _bound_class(self) -> str | None:
        """Class the content pull is restricted to.

        Read from the active user at sync time so that switching users never
        pulls the previous user's class; the stored binding is only used when
        nobody is logged in.
        """
        user_id = self.state.active_user_id
        if user_id is not None:
            user = self.store.find_one(USERS, user_id)
            if user is not None:
                return user.get("teacherClassId")
        return self.state.bound_class_id

    async def _pull(self, collection: str, report: CollectionReport) -> None:
        body = await self._request(
            "GET",
            f"{collection}/_all_docs",
            parse_json=True,
            params={"include_docs": "true"},
        )
        rows = body.get("rows") if isinstance(body, dict) else None
        if not isinstance(rows, list):
            raise NetworkError("malformed _all_docs response", url=f"{self.base_url}/{collection}")

        docs = [
            row["doc"]
            for row in rows
            if isinstance(row, dict) and isinstance(row.get("doc"), dict)
        ]

        bound_class = self._bound_class()
        if collection == CONTENT and bound_class:
            docs = [doc for doc in docs if doc.get("classId") == bound_class]

        report.pulled = len(docs)
        result = merge_remote_documents(
            self.store,
            collection,
            docs,
            protected_user_id=self.state.active_user_id,
        )
        report.merged = result.merged
        report.rejected = result.rejected

    async def _push(self, collection: str, report: CollectionReport) -> None:
        checkpoint = self.state.get_checkpoint(collection)
        docs, new_checkpoint = self.store.changed_since(collection, checkpoint)
        if not docs:
            return

        # Response body is not inspected; any 2xx counts as accepted
        await self._request("POST", f"{collection}/_bulk_docs", json={"docs": docs})
        self.state.set_checkpoint(collection, new_checkpoint)
        report.pushed = len(docs)

    # -------------------------------------------------------------------------
    # ROUND
    # -------------------------------------------------------------------------

    async def sync_once(self) -> SyncReport:
        """Run one push/pull round over the configured collections.

        Local changes are pushed before pulling so that the pull-side merge
        sees the server's view including this device's writes.

        Returns:
            SyncReport; failures are recorded in it, never raised
        """
        report = SyncReport(remote_url=self.base_url, started_at=_utc_now())
        logger.info("replicator.sync_started", remote=self.base_url)

        for collection in self.settings.collections:
            coll_report = CollectionReport(collection=collection)
            report.collections.append(coll_report)

            if collection in PUSH_COLLECTIONS:
                try:
                    await self._push(collection, coll_report)
                except NetworkError as e:
                    coll_report.errors.append(f"push: {e.message}")

            try:
                await self._pull(collection, coll_report)
            except NetworkError as e:
                coll_report.errors.append(f"pull: {e.message}")

        report.finished_at = _utc_now()
        if report.ok:
            self.state.mark_synced()

        logger.info(
            "replicator.sync_finished",
            remote=self.base_url,
            ok=report.ok,
            pulled=report.total_pulled,
            pushed=report.total_pushed,
        )
        return report
