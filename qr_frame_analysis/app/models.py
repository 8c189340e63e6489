"""Shared data models for QR frame analysis."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

Point = Tuple[float, float]

QR_SYMBOLOGY = "qr"


@dataclass(frozen=True)
class BoundingBox:
    """Normalized bounding box, top-left origin, all values in [0, 1]."""

    x: float
    y: float
    width: float
    height: float

    def to_pixels(self, image_width: int, image_height: int) -> Tuple[int, int, int, int]:
        """Return the box as clamped pixel bounds in xyxy format."""

        x1 = int(round(self.x * image_width))
        y1 = int(round(self.y * image_height))
        x2 = int(round((self.x + self.width) * image_width))
        y2 = int(round((self.y + self.height) * image_height))
        x1, x2 = max(0, x1), min(image_width, x2)
        y1, y2 = max(0, y1), min(image_height, y2)
        return x1, y1, x2, y2


@dataclass(frozen=True)
class BarcodeCandidate:
    symbology: str
    confidence: float
    bbox: BoundingBox
    payload: Optional[str] = None


@dataclass(frozen=True)
class RectangleCandidate:
    confidence: float
    bbox: BoundingBox
    corners: Tuple[Point, ...] = ()


@dataclass(frozen=True)
class Contour:
    """Ordered boundary points in normalized coordinates, implicitly closed."""

    points: Sequence[Point]


@dataclass(frozen=True)
class RectangleDetectionConfig:
    minimum_aspect_ratio: float = 0.85
    maximum_aspect_ratio: float = 1.15
    quadrature_tolerance: float = 0.1
    minimum_size: float = 0.1
    maximum_observations: int = 0

    def __post_init__(self) -> None:
        if not 0 < self.minimum_aspect_ratio <= self.maximum_aspect_ratio:
            raise ValueError(
                f"Invalid aspect ratio window: [{self.minimum_aspect_ratio}, {self.maximum_aspect_ratio}]"
            )
        if self.maximum_observations < 0:
            raise ValueError("maximum_observations must be >= 0")


@dataclass(frozen=True)
class ContourDetectionConfig:
    contrast_adjustment: float = 2.0
    maximum_image_dimension: int = 500

    def __post_init__(self) -> None:
        if self.contrast_adjustment <= 0:
            raise ValueError("contrast_adjustment must be positive")
        if self.maximum_image_dimension <= 0:
            raise ValueError("maximum_image_dimension must be positive")


class SizeClass(str, Enum):
    TOO_SMALL = "too_small"
    DETECTED = "detected"


class CandidateStatus(str, Enum):
    TOO_SMALL = "too_small"
    TOO_BLURRY = "too_blurry"
    UNSCORED = "unscored"
    ACCEPTABLE = "acceptable"


@dataclass
class CandidateVerdict:
    candidate: BarcodeCandidate
    size_class: SizeClass
    status: CandidateStatus
    score: Optional[float] = None
    prompt: Optional[str] = None


@dataclass
class AnalysisResult:
    """Outcome of analysing one accepted frame."""

    frame_index: int
    timestamp: float
    barcodes: List[BarcodeCandidate] = field(default_factory=list)
    rectangles: List[RectangleCandidate] = field(default_factory=list)
    verdicts: List[CandidateVerdict] = field(default_factory=list)
    latency_ms: float = 0.0

    @property
    def has_candidates(self) -> bool:
        return bool(self.barcodes or self.rectangles)

    def prompts(self) -> List[str]:
        return [verdict.prompt for verdict in self.verdicts if verdict.prompt]
