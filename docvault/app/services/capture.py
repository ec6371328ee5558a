"""Capture loop feeding scanned codes into a verification session.

A ``FrameSource`` is an exclusive device (camera, scanner) that yields
decoded QR strings. The loop holds it only inside ``async with`` so the
device is released on success, failure and cancellation alike.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterable, Optional, Protocol

import structlog

from ..domain.payload import extract_token
from ..errors import FormatError

log = structlog.get_logger(__name__)


class FrameSource(Protocol):
    async def __aenter__(self) -> "FrameSource": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    def frames(self) -> AsyncIterator[str]:
        """Decoded QR contents, one per recognised frame."""


async def scan_for_payload(source: FrameSource, timeout: Optional[float] = None) -> str:
    """Return the first frame that looks like a verification payload.

    Frames that fail the shape check are skipped. Raises
    ``asyncio.TimeoutError`` on timeout and propagates cancellation; the
    source is closed either way.
    """

    async def _loop() -> str:
        async with source:
            async for frame in source.frames():
                try:
                    extract_token(frame)
                except FormatError:
                    log.debug("frame_skipped")
                    continue
                return frame
        raise FormatError("capture ended without a verification payload")

    if timeout is None:
        return await _loop()
    return await asyncio.wait_for(_loop(), timeout)


class StaticFrameSource:
    """Replays a fixed list of frames; stands in for a camera in tools and tests."""

    def __init__(self, frames: Iterable[str], delay: float = 0.0) -> None:
        self._frames = list(frames)
        self.delay = delay
        self.opened = False
        self.released = False

    async def __aenter__(self) -> "StaticFrameSource":
        if self.opened and not self.released:
            raise RuntimeError("device already in use")
        self.opened, self.released = True, False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.released = True

    async def frames(self) -> AsyncIterator[str]:
        for frame in self._frames:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield frame
