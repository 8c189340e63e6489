"""Per-frame detection orchestration."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Set

import numpy as np

from ..models import (
    QR_SYMBOLOGY,
    AnalysisResult,
    BarcodeCandidate,
    RectangleCandidate,
    RectangleDetectionConfig,
)
from .detector import VisionBackend
from .quality import CandidatePolicy

LOGGER = logging.getLogger(__name__)

ResultCallback = Callable[[AnalysisResult], None]


class ImageConversionError(ValueError):
    """Raised when an image has no usable raster for a detector."""


def _has_raster(image: Optional[np.ndarray]) -> bool:
    return image is not None and getattr(image, "size", 0) > 0


def is_unreadable_qr(candidate: BarcodeCandidate) -> bool:
    """True for QR codes that were located but not decoded."""

    return candidate.symbology == QR_SYMBOLOGY and candidate.confidence > 0 and candidate.payload is None


class DetectionOrchestrator:
    """Run the barcode and rectangle passes for accepted frames.

    ``submit`` schedules one task per frame and drops frames while
    ``max_in_flight`` analyses are running. ``max_in_flight=None`` removes
    the cap.
    """

    def __init__(
        self,
        backend: VisionBackend,
        rectangle_config: Optional[RectangleDetectionConfig] = None,
        *,
        policy: Optional[CandidatePolicy] = None,
        on_result: Optional[ResultCallback] = None,
        max_in_flight: Optional[int] = 1,
    ) -> None:
        if max_in_flight is not None and max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1 or None, got {max_in_flight}")
        self.backend = backend
        self.rectangle_config = rectangle_config or RectangleDetectionConfig()
        self.policy = policy
        self.on_result = on_result
        self.max_in_flight = max_in_flight
        self._tasks: Set[asyncio.Task] = set()
        self.completed_count = 0
        self.failed_count = 0
        self.dropped_count = 0

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def detect_unreadable_qr_codes(self, image: Optional[np.ndarray]) -> List[BarcodeCandidate]:
        if not _has_raster(image):
            return []
        results = self.backend.detect_barcodes(image)
        for result in results:
            LOGGER.debug(
                "Symbology: %s, Confidence: %.3f, Payload: %s",
                result.symbology,
                result.confidence,
                result.payload,
            )
        return [result for result in results if is_unreadable_qr(result)]

    def detect_square_shapes(self, image: Optional[np.ndarray]) -> List[RectangleCandidate]:
        if not _has_raster(image):
            raise ImageConversionError("Image has no raster data for rectangle detection")
        results = self.backend.detect_rectangles(image, self.rectangle_config)
        for result in results:
            LOGGER.debug("Detected shape confidence: %.3f", result.confidence)
        return [result for result in results if result.confidence > 0]

    async def analyze(
        self,
        image: Optional[np.ndarray],
        frame_index: int = 0,
        timestamp: float = 0.0,
    ) -> Optional[AnalysisResult]:
        """Analyse one image; failures are logged and yield None."""

        start = time.perf_counter()
        try:
            barcodes, rectangles = await asyncio.gather(
                asyncio.to_thread(self.detect_unreadable_qr_codes, image),
                asyncio.to_thread(self.detect_square_shapes, image),
            )
            verdicts = []
            if self.policy is not None and barcodes:
                verdicts = await asyncio.to_thread(self.policy.assess, image, barcodes, rectangles)
        except Exception:
            self.failed_count += 1
            LOGGER.exception("Failed to detect potential QR codes in frame %d", frame_index)
            return None

        result = AnalysisResult(
            frame_index=frame_index,
            timestamp=timestamp,
            barcodes=barcodes,
            rectangles=rectangles,
            verdicts=verdicts,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
        self.completed_count += 1
        LOGGER.info(
            "Frame %d | unreadable_qr=%d | squares=%d | prompts=%s | latency_ms=%.2f",
            frame_index,
            len(barcodes),
            len(rectangles),
            result.prompts(),
            result.latency_ms,
        )
        if self.on_result is not None:
            self.on_result(result)
        return result

    def submit(self, image: np.ndarray, frame_index: int = 0, timestamp: float = 0.0) -> bool:
        """Schedule analysis on the running loop; False when the frame was dropped."""

        if self.max_in_flight is not None and self.in_flight >= self.max_in_flight:
            self.dropped_count += 1
            LOGGER.debug("Dropping frame %d: %d analyses in flight", frame_index, self.in_flight)
            return False
        task = asyncio.get_running_loop().create_task(self.analyze(image, frame_index, timestamp))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def drain(self) -> None:
        """Wait for every in-flight analysis to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        LOGGER.info("Cancelled %d in-flight analyses", len(tasks))
