"""Region quality heuristics for potential QR codes."""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

import numpy as np

from ..models import (
    BarcodeCandidate,
    BoundingBox,
    CandidateStatus,
    CandidateVerdict,
    ContourDetectionConfig,
    RectangleCandidate,
    SizeClass,
)
from ..utils.geometry import crop_normalized, total_contour_length
from .detector import VisionBackend

LOGGER = logging.getLogger(__name__)

TOO_SMALL_PROMPT = "Potential QR code is too small. Please move closer."
TOO_BLURRY_PROMPT = "Potential QR code is too blurry. Please hold the camera steady."


def classify_region_size(bbox: BoundingBox, minimum: float = 0.1) -> SizeClass:
    """Flag regions whose normalized width or height falls below ``minimum``."""

    LOGGER.debug("Potential QR code size: %.3fx%.3f", bbox.width, bbox.height)
    if bbox.width < minimum or bbox.height < minimum:
        return SizeClass.TOO_SMALL
    return SizeClass.DETECTED


class RegionQualityEstimator:
    """Score a region by its contour perimeter per pixel of area.

    Higher scores mean more structured edges inside the crop, lower scores
    point at blur or a featureless region. No threshold is applied here.
    """

    def __init__(self, backend: VisionBackend, config: Optional[ContourDetectionConfig] = None) -> None:
        self.backend = backend
        self.config = config or ContourDetectionConfig()

    def score(self, image: np.ndarray, bbox: BoundingBox) -> Optional[float]:
        crop = crop_normalized(image, bbox)
        if crop is None:
            LOGGER.debug("Empty crop for region %s", bbox)
            return None
        contours = self.backend.detect_contours(crop, self.config)
        if not contours:
            LOGGER.debug("Could not detect contours for region %s", bbox)
            return None
        crop_height, crop_width = crop.shape[:2]
        total_length = total_contour_length(contours)
        score = total_length / float(crop_width * crop_height)
        LOGGER.debug("Contour length %.4f over %dx%d crop -> score %.6f", total_length, crop_width, crop_height, score)
        return score


class CandidatePolicy(Protocol):
    """Decides what to tell the user about the candidates of one frame."""

    def assess(
        self,
        image: np.ndarray,
        barcodes: Sequence[BarcodeCandidate],
        rectangles: Sequence[RectangleCandidate],
    ) -> List[CandidateVerdict]:
        ...


class QualityCheckPolicy:
    """Size check followed by contour scoring with an optional blur threshold."""

    def __init__(
        self,
        estimator: RegionQualityEstimator,
        *,
        minimum_size: float = 0.1,
        blur_threshold: Optional[float] = None,
    ) -> None:
        self.estimator = estimator
        self.minimum_size = minimum_size
        self.blur_threshold = blur_threshold

    def assess(
        self,
        image: np.ndarray,
        barcodes: Sequence[BarcodeCandidate],
        rectangles: Sequence[RectangleCandidate],
    ) -> List[CandidateVerdict]:
        verdicts: List[CandidateVerdict] = []
        for candidate in barcodes:
            size_class = classify_region_size(candidate.bbox, self.minimum_size)
            if size_class is SizeClass.TOO_SMALL:
                verdicts.append(
                    CandidateVerdict(candidate, size_class, CandidateStatus.TOO_SMALL, prompt=TOO_SMALL_PROMPT)
                )
                continue

            score = self.estimator.score(image, candidate.bbox)
            if score is None:
                verdicts.append(CandidateVerdict(candidate, size_class, CandidateStatus.UNSCORED))
            elif self.blur_threshold is not None and score < self.blur_threshold:
                verdicts.append(
                    CandidateVerdict(
                        candidate, size_class, CandidateStatus.TOO_BLURRY, score=score, prompt=TOO_BLURRY_PROMPT
                    )
                )
            else:
                verdicts.append(CandidateVerdict(candidate, size_class, CandidateStatus.ACCEPTABLE, score=score))
        return verdicts
