"""Frame capture for the QR frame analyzer.

Frames are stamped in seconds on the clock the gatekeeper cooldown is
measured against: read time for live sources, media position for files.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Generator, Iterator, Optional, Union
from urllib.parse import urlparse

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)

Source = Union[int, str]

LIVE_SCHEMES = {"rtsp", "rtmp", "http", "https", "udp", "tcp"}


@dataclass
class Frame:
    index: int
    data: Optional[np.ndarray]
    timestamp: float


def parse_source(source: str) -> Source:
    """Interpret numeric sources as camera device indexes."""

    try:
        return int(source)
    except ValueError:
        return source


def is_live_source(source: Source) -> bool:
    """Camera indexes and network streams are live; anything else is a file."""

    if isinstance(source, int):
        return True
    return urlparse(source).scheme.lower() in LIVE_SCHEMES


@contextmanager
def open_capture(source: Source) -> Generator[cv2.VideoCapture, None, None]:
    """Open ``source`` and release it on exit."""

    capture = cv2.VideoCapture(source)
    try:
        if not capture.isOpened():
            raise RuntimeError(f"Unable to open video source: {source}")
        LOGGER.info("Capturing from %s (%s)", source, "live" if is_live_source(source) else "file")
        yield capture
    finally:
        capture.release()


class FrameReader:
    """Read frames from a capture and stamp them with capture time.

    Live frames take ``clock()`` at read time because cameras advertise a
    nominal FPS they often do not deliver. File frames use the media
    position, falling back to index / FPS when the backend reports none.
    """

    def __init__(
        self,
        capture: cv2.VideoCapture,
        *,
        live: bool,
        process_every: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if process_every < 1:
            raise ValueError(f"process_every must be >= 1, got {process_every}")
        self.capture = capture
        self.live = live
        self.process_every = process_every
        self.clock = clock
        self._read_count = 0
        self._yielded = 0
        self._fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)

    @property
    def frames_read(self) -> int:
        return self._read_count

    def _stamp(self) -> float:
        if self.live:
            return self.clock()
        position_ms = float(self.capture.get(cv2.CAP_PROP_POS_MSEC) or 0.0)
        if position_ms > 0:
            return position_ms / 1000.0
        if self._fps > 0:
            return self._read_count / self._fps
        return self.clock()

    def read(self) -> Optional[Frame]:
        """Return the next processed frame, or None at end of stream."""

        while True:
            success, data = self.capture.read()
            if not success:
                LOGGER.info("Stream ended after %d frames", self._read_count)
                return None
            self._read_count += 1
            if self._read_count % self.process_every:
                continue
            self._yielded += 1
            return Frame(index=self._yielded, data=data, timestamp=self._stamp())

    async def read_async(self) -> Optional[Frame]:
        """``read`` on a worker thread so the event loop keeps running."""

        return await asyncio.to_thread(self.read)

    def __iter__(self) -> Iterator[Frame]:
        while True:
            frame = self.read()
            if frame is None:
                return
            yield frame
