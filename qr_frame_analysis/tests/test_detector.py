from __future__ import annotations

import cv2
import numpy as np
import pytest

from qr_frame_analysis.app.models import ContourDetectionConfig, RectangleDetectionConfig
from qr_frame_analysis.app.services.detector import OpenCVVisionBackend

# Drawn shapes lose their sharp corners to blur and edge detection.
LENIENT = RectangleDetectionConfig(quadrature_tolerance=10.0)


@pytest.fixture()
def backend() -> OpenCVVisionBackend:
    return OpenCVVisionBackend()


def draw_squares(size: int, *boxes: tuple[int, int, int, int]) -> np.ndarray:
    image = np.zeros((size, size, 3), dtype=np.uint8)
    for x1, y1, x2, y2 in boxes:
        cv2.rectangle(image, (x1, y1), (x2, y2), (255, 255, 255), -1)
    return image


def striped(height: int, width: int, period: int = 10) -> np.ndarray:
    image = np.zeros((height, width), dtype=np.uint8)
    for x in range(0, width, period * 2):
        image[:, x : x + period] = 255
    return image


def test_blank_image_has_no_barcodes(backend: OpenCVVisionBackend) -> None:
    assert backend.detect_barcodes(np.full((120, 120, 3), 255, dtype=np.uint8)) == []


def test_detects_drawn_square(backend: OpenCVVisionBackend) -> None:
    image = draw_squares(200, (50, 50, 149, 149))

    rectangles = backend.detect_rectangles(image, LENIENT)

    assert len(rectangles) == 1
    square = rectangles[0]
    assert 0 < square.confidence <= 1.0
    assert square.bbox.x == pytest.approx(0.25, abs=0.03)
    assert square.bbox.y == pytest.approx(0.25, abs=0.03)
    assert square.bbox.width == pytest.approx(0.5, abs=0.05)
    assert len(square.corners) == 4


def test_rejects_elongated_rectangle(backend: OpenCVVisionBackend) -> None:
    image = np.zeros((300, 300, 3), dtype=np.uint8)
    cv2.rectangle(image, (20, 100), (220, 160), (255, 255, 255), -1)
    assert backend.detect_rectangles(image, LENIENT) == []


def test_rejects_square_below_minimum_size(backend: OpenCVVisionBackend) -> None:
    image = draw_squares(400, (100, 100, 129, 129))
    config = RectangleDetectionConfig(quadrature_tolerance=10.0, minimum_size=0.2)
    assert backend.detect_rectangles(image, config) == []


def test_maximum_observations_limits_results(backend: OpenCVVisionBackend) -> None:
    image = draw_squares(200, (20, 20, 79, 79), (120, 120, 179, 179))
    assert len(backend.detect_rectangles(image, LENIENT)) == 2

    limited = RectangleDetectionConfig(quadrature_tolerance=10.0, maximum_observations=1)
    assert len(backend.detect_rectangles(image, limited)) == 1


def test_contours_absent_for_empty_image(backend: OpenCVVisionBackend) -> None:
    assert backend.detect_contours(np.zeros((0, 0, 3), dtype=np.uint8), ContourDetectionConfig()) is None


def test_featureless_crop_has_no_contours(backend: OpenCVVisionBackend) -> None:
    flat = np.full((60, 60, 3), 128, dtype=np.uint8)
    assert backend.detect_contours(flat, ContourDetectionConfig()) == []


def test_contours_are_normalized_after_downscaling(backend: OpenCVVisionBackend) -> None:
    image = striped(800, 1000, period=25)

    contours = backend.detect_contours(image, ContourDetectionConfig(maximum_image_dimension=500))

    assert contours
    for contour in contours:
        for x, y in contour.points:
            assert 0.0 <= x <= 1.0
            assert 0.0 <= y <= 1.0
