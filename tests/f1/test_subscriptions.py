"""Tests for live query subscriptions."""

import pytest


class TestSubscribe:
    """Tests for DocumentStore.subscribe()."""

    def test_initial_result_set_emitted(self, store, make_user, make_progress):
        """The current result set is delivered on subscribe."""
        make_user(id="u1")
        make_progress("u1", "L1", 50, 1)

        sub = store.subscribe("progress", {"userId": "u1"})
        pending = sub.drain()
        assert len(pending) == 1
        assert len(pending[0]) == 1

    def test_matching_write_triggers_emission(self, store, make_user, make_progress):
        """Inserting a matching document emits the new result set."""
        make_user(id="u1")
        sub = store.subscribe("progress", {"userId": "u1"})
        sub.drain()

        make_progress("u1", "L1", 50, 1)
        pending = sub.drain()
        assert len(pending) == 1
        assert pending[0][0]["levelId"] == "L1"
        assert sub.latest == pending[0]

    def test_unrelated_write_does_not_emit(self, store, make_user, make_progress):
        """Writes outside the selector are not delivered."""
        make_user(id="u1")
        make_user(id="u2")
        sub = store.subscribe("progress", {"userId": "u1"})
        sub.drain()

        make_progress("u2", "L1", 50, 1)
        assert sub.drain() == []

    def test_document_leaving_selector_emits(self, store, make_content):
        """A patch moving a document out of the selector emits the smaller set."""
        item = make_content("quiz", "Q", classId="k1")
        sub = store.subscribe("content", {"classId": "k1"})
        sub.drain()

        store.patch("content", item["id"], {"classId": "k2"})
        assert sub.drain() == [[]]

    def test_cancel_stops_emissions(self, store, make_user, make_progress):
        """After cancel nothing more is delivered; cancel is idempotent."""
        make_user(id="u1")
        sub = store.subscribe("progress", {"userId": "u1"})
        before = sub.emissions

        sub.cancel()
        sub.cancel()
        make_progress("u1", "L1", 50, 1)

        assert sub.cancelled
        assert sub.emissions == before
        assert sub.drain() == []


class TestAsyncIteration:
    """Tests for consuming a subscription with async for."""

    @pytest.mark.asyncio
    async def test_iteration_ends_after_cancel(self, store, make_content):
        """Iteration yields the emitted sets, then stops on cancel."""
        sub = store.subscribe("content")
        make_content("quiz", "Q")

        seen = []
        async for rows in sub:
            seen.append(len(rows))
            if len(seen) == 2:
                sub.cancel()

        assert seen == [0, 1]
