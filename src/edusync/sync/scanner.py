"""Scan session: a bounded consumer of camera decode results.

Frames arrive as decoded text, or None when the frame held no readable
code. Failed frames are counted and ignored. The first decoded frame
completes the session; later frames are ignored and the frame source is
closed.
"""

from __future__ import annotations

from enum import Enum
from typing import AsyncIterable, Iterable

import structlog

logger = structlog.get_logger(__name__)


class ScanState(Enum):
    SCANNING = "scanning"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ScanSession:
    """State machine for one QR scan."""

    def __init__(self) -> None:
        self.state = ScanState.SCANNING
        self.result: str | None = None
        self.failed_frames = 0

    @property
    def is_open(self) -> bool:
        return self.state is ScanState.SCANNING

    def frame_failed(self) -> None:
        if self.is_open:
            self.failed_frames += 1

    def frame_decoded(self, text: str) -> bool:
        """Offer a decoded frame.

        Returns:
            True if the frame was accepted (first success), False otherwise
        """
        if not self.is_open:
            return False
        self.result = text
        self.state = ScanState.COMPLETED
        logger.debug("scan.completed", failed_frames=self.failed_frames, length=len(text))
        return True

    def cancel(self) -> None:
        if self.is_open:
            self.state = ScanState.CANCELLED
            logger.debug("scan.cancelled", failed_frames=self.failed_frames)

    def _offer(self, frame: str | None) -> None:
        if frame is None or not frame.strip():
            self.frame_failed()
        else:
            self.frame_decoded(frame)

    async def run(
        self,
        frames: Iterable[str | None] | AsyncIterable[str | None],
    ) -> str | None:
        """Consume frames until one decodes, the session is cancelled,
        or the source is exhausted.

        Returns:
            The decoded text, or None
        """
        if hasattr(frames, "__aiter__"):
            iterator = frames.__aiter__()
            try:
                async for frame in iterator:
                    self._offer(frame)
                    if not self.is_open:
                        break
            finally:
                aclose = getattr(iterator, "aclose", None)
                if aclose is not None:
                    await aclose()
        else:
            iterator = iter(frames)
            try:
                for frame in iterator:
                    self._offer(frame)
                    if not self.is_open:
                        break
            finally:
                close = getattr(iterator, "close", None)
                if close is not None:
                    close()

        return self.result if self.state is ScanState.COMPLETED else None
