"""Geometry helpers for contours, corners and normalized boxes."""
from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence

import numpy as np

from ..models import BoundingBox, Contour, Point


def contour_length(points: Sequence[Point]) -> float:
    """Return the perimeter of an implicitly closed point sequence."""

    if len(points) < 2:
        return 0.0
    length = 0.0
    for (x1, y1), (x2, y2) in zip(points[:-1], points[1:]):
        length += math.hypot(x2 - x1, y2 - y1)
    first, last = points[0], points[-1]
    if tuple(first) != tuple(last):
        length += math.hypot(first[0] - last[0], first[1] - last[1])
    return length


def total_contour_length(contours: Iterable[Contour]) -> float:
    return sum(contour_length(contour.points) for contour in contours)


def crop_normalized(image: np.ndarray, bbox: BoundingBox) -> Optional[np.ndarray]:
    """Crop an image to a normalized box; None when the crop is empty."""

    height, width = image.shape[:2]
    x1, y1, x2, y2 = bbox.to_pixels(width, height)
    if x2 <= x1 or y2 <= y1:
        return None
    return image[y1:y2, x1:x2]


def bbox_from_points(points: np.ndarray, image_width: int, image_height: int) -> BoundingBox:
    """Return the normalized axis-aligned box enclosing pixel points."""

    xs = points[:, 0].astype(np.float64)
    ys = points[:, 1].astype(np.float64)
    x1 = max(0.0, float(xs.min()))
    y1 = max(0.0, float(ys.min()))
    x2 = min(float(image_width), float(xs.max()))
    y2 = min(float(image_height), float(ys.max()))
    return BoundingBox(
        x=x1 / image_width,
        y=y1 / image_height,
        width=max(0.0, x2 - x1) / image_width,
        height=max(0.0, y2 - y1) / image_height,
    )


def corner_angles(corners: np.ndarray) -> list[float]:
    """Return the interior angle in degrees at each vertex of a polygon."""

    angles = []
    count = len(corners)
    for idx in range(count):
        prev_pt = corners[idx - 1].astype(np.float64)
        point = corners[idx].astype(np.float64)
        next_pt = corners[(idx + 1) % count].astype(np.float64)
        v1 = prev_pt - point
        v2 = next_pt - point
        norm = np.linalg.norm(v1) * np.linalg.norm(v2)
        if norm == 0:
            angles.append(0.0)
            continue
        cosine = float(np.clip(np.dot(v1, v2) / norm, -1.0, 1.0))
        angles.append(math.degrees(math.acos(cosine)))
    return angles
