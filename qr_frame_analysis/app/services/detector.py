"""Vision primitives used by the analyzer, with an OpenCV implementation."""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol

import numpy as np

try:  # pragma: no cover - import guarded for environments without OpenCV
    import cv2
except ImportError as exc:  # pragma: no cover
    raise ImportError(
        "opencv-python is required for the QR frame analyzer. Install the project dependencies first."
    ) from exc

from ..models import (
    QR_SYMBOLOGY,
    BarcodeCandidate,
    Contour,
    ContourDetectionConfig,
    RectangleCandidate,
    RectangleDetectionConfig,
)
from ..utils.geometry import bbox_from_points, corner_angles

LOGGER = logging.getLogger(__name__)


class VisionBackend(Protocol):
    """Capability set the analyzer needs from a vision library."""

    def detect_barcodes(self, image: np.ndarray) -> List[BarcodeCandidate]:
        ...

    def detect_rectangles(self, image: np.ndarray, config: RectangleDetectionConfig) -> List[RectangleCandidate]:
        ...

    def detect_contours(self, image: np.ndarray, config: ContourDetectionConfig) -> Optional[List[Contour]]:
        ...


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


class OpenCVVisionBackend:
    """Barcode, rectangle and contour detection built on OpenCV."""

    EDGE_LOW = 50
    EDGE_HIGH = 150
    APPROX_EPSILON = 0.02

    def __init__(self) -> None:
        self._qr_detector = cv2.QRCodeDetector()

    def detect_barcodes(self, image: np.ndarray) -> List[BarcodeCandidate]:
        """Locate QR codes; undecodable codes carry no payload."""

        height, width = image.shape[:2]
        found, decoded, points, _ = self._qr_detector.detectAndDecodeMulti(image)
        if not found or points is None:
            return []
        candidates: List[BarcodeCandidate] = []
        for payload, corners in zip(decoded, points):
            corners = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
            candidates.append(
                BarcodeCandidate(
                    symbology=QR_SYMBOLOGY,
                    confidence=1.0,
                    bbox=bbox_from_points(corners, width, height),
                    payload=payload or None,
                )
            )
        LOGGER.debug("Located %d QR codes", len(candidates))
        return candidates

    def detect_rectangles(self, image: np.ndarray, config: RectangleDetectionConfig) -> List[RectangleCandidate]:
        """Find convex quadrilaterals matching the aspect, angle and size limits."""

        height, width = image.shape[:2]
        gray = _to_gray(image)
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        edges = cv2.Canny(blurred, self.EDGE_LOW, self.EDGE_HIGH)
        edges = cv2.dilate(edges, np.ones((3, 3), dtype=np.uint8))
        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        min_side_px = config.minimum_size * min(width, height)
        candidates: List[RectangleCandidate] = []
        for contour in contours:
            approx = cv2.approxPolyDP(contour, self.APPROX_EPSILON * cv2.arcLength(contour, True), True)
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue
            corners = approx.reshape(4, 2)
            if any(abs(angle - 90.0) > config.quadrature_tolerance for angle in corner_angles(corners)):
                continue
            sides = [float(np.linalg.norm(corners[(idx + 1) % 4] - corners[idx])) for idx in range(4)]
            across = (sides[1] + sides[3]) / 2.0
            if across == 0:
                continue
            aspect = ((sides[0] + sides[2]) / 2.0) / across
            if not config.minimum_aspect_ratio <= aspect <= config.maximum_aspect_ratio:
                continue
            (_, _), (rect_w, rect_h), _ = cv2.minAreaRect(approx)
            if min(rect_w, rect_h) < min_side_px or rect_w * rect_h == 0:
                continue
            confidence = float(min(1.0, cv2.contourArea(approx) / (rect_w * rect_h)))
            candidates.append(
                RectangleCandidate(
                    confidence=confidence,
                    bbox=bbox_from_points(corners, width, height),
                    corners=tuple((float(x) / width, float(y) / height) for x, y in corners),
                )
            )

        candidates.sort(key=lambda candidate: candidate.confidence, reverse=True)
        if config.maximum_observations > 0:
            candidates = candidates[: config.maximum_observations]
        LOGGER.debug("Detected %d rectangles", len(candidates))
        return candidates

    def detect_contours(self, image: np.ndarray, config: ContourDetectionConfig) -> Optional[List[Contour]]:
        """Trace region outlines on a contrast-boosted, size-capped copy of the image."""

        if image is None or image.size == 0:
            return None
        gray = _to_gray(image)
        height, width = gray.shape[:2]
        scale = min(1.0, config.maximum_image_dimension / float(max(height, width)))
        if scale < 1.0:
            gray = cv2.resize(
                gray,
                (max(1, int(width * scale)), max(1, int(height * scale))),
                interpolation=cv2.INTER_AREA,
            )
        work_h, work_w = gray.shape[:2]

        mean = float(gray.mean())
        adjusted = np.clip((gray.astype(np.float32) - mean) * config.contrast_adjustment + mean, 0, 255)
        adjusted = adjusted.astype(np.uint8)
        if adjusted.min() == adjusted.max():
            return []
        _, binary = cv2.threshold(adjusted, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        raw_contours, _ = cv2.findContours(binary, cv2.RETR_LIST, cv2.CHAIN_APPROX_NONE)

        contours = [
            Contour(points=[(float(x) / work_w, float(y) / work_h) for x, y in raw.reshape(-1, 2)])
            for raw in raw_contours
        ]
        LOGGER.debug("Traced %d contours on %dx%d working image", len(contours), work_w, work_h)
        return contours
