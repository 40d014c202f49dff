"""Tests for the scan session state machine."""

import pytest

from edusync.sync.scanner import ScanSession, ScanState


class TestScanSession:
    """Tests for frame events."""

    def test_failed_frames_counted_and_ignored(self):
        session = ScanSession()
        session.frame_failed()
        session.frame_failed()
        assert session.failed_frames == 2
        assert session.state is ScanState.SCANNING

    def test_first_decoded_frame_wins(self):
        session = ScanSession()
        assert session.frame_decoded("first") is True
        assert session.frame_decoded("second") is False
        assert session.result == "first"
        assert session.state is ScanState.COMPLETED

    def test_cancel_ignores_later_frames(self):
        session = ScanSession()
        session.cancel()
        assert session.frame_decoded("late") is False
        assert session.state is ScanState.CANCELLED
        assert session.result is None


class TestRun:
    """Tests for ScanSession.run()."""

    @pytest.mark.asyncio
    async def test_run_returns_first_success_and_closes_source(self):
        """The source is not read past the first decoded frame."""
        consumed = []

        def frames():
            for frame in [None, None, "payload", "other"]:
                consumed.append(frame)
                yield frame

        session = ScanSession()
        assert await session.run(frames()) == "payload"
        assert consumed == [None, None, "payload"]
        assert session.failed_frames == 2

    @pytest.mark.asyncio
    async def test_run_with_async_source(self):
        async def frames():
            yield None
            yield "payload"

        assert await ScanSession().run(frames()) == "payload"

    @pytest.mark.asyncio
    async def test_run_exhausted_source_returns_none(self):
        session = ScanSession()
        assert await session.run([None, ""]) is None
        assert session.state is ScanState.SCANNING

    @pytest.mark.asyncio
    async def test_run_after_cancel_returns_none(self):
        session = ScanSession()
        session.cancel()
        assert await session.run(["payload"]) is None
