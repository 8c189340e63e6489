"""Cooldown-based frame sampling."""
from __future__ import annotations

import logging
import math
from typing import Optional

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)


def to_still_image(data: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Convert raw frame data into a contiguous 8-bit BGR image, or None."""

    if data is None or not isinstance(data, np.ndarray) or data.size == 0:
        return None
    if data.dtype != np.uint8:
        if not np.issubdtype(data.dtype, np.number):
            return None
        data = np.clip(data, 0, 255).astype(np.uint8)
    if data.ndim == 2:
        return cv2.cvtColor(data, cv2.COLOR_GRAY2BGR)
    if data.ndim != 3:
        return None
    channels = data.shape[2]
    if channels == 3:
        return np.ascontiguousarray(data)
    if channels == 4:
        return cv2.cvtColor(data, cv2.COLOR_BGRA2BGR)
    if channels == 1:
        return cv2.cvtColor(data, cv2.COLOR_GRAY2BGR)
    return None


class FrameGatekeeper:
    """Drop frames that arrive before the cooldown has elapsed.

    With ``rearm_on_accept`` disabled the last accepted timestamp is never
    updated, so once the first frame is eligible every later frame is too.
    That mode exists only to reproduce the legacy analyzer.
    """

    def __init__(self, cooldown_seconds: float, *, rearm_on_accept: bool = True) -> None:
        if cooldown_seconds < 0:
            raise ValueError(f"Cooldown must be non-negative: {cooldown_seconds}")
        self.cooldown_seconds = cooldown_seconds
        self.rearm_on_accept = rearm_on_accept
        self._last_accepted = -math.inf

    @property
    def last_accepted(self) -> float:
        return self._last_accepted

    def reset(self) -> None:
        self._last_accepted = -math.inf

    def admit(self, data: Optional[np.ndarray], timestamp: float) -> Optional[np.ndarray]:
        """Return the still image if the frame is eligible, without re-arming.

        Callers that may still discard the image (for example when analysis
        is busy) call ``mark_accepted`` once the frame is actually taken.
        """

        if timestamp - self._last_accepted < self.cooldown_seconds:
            return None
        image = to_still_image(data)
        if image is None:
            LOGGER.debug("Dropping frame at %.3fs: no convertible pixel data", timestamp)
        return image

    def mark_accepted(self, timestamp: float) -> None:
        if self.rearm_on_accept:
            self._last_accepted = timestamp

    def offer(self, data: Optional[np.ndarray], timestamp: float) -> Optional[np.ndarray]:
        image = self.admit(data, timestamp)
        if image is not None:
            self.mark_accepted(timestamp)
        return image
