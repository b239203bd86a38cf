"""Staleness decisions: manifest pre-filter and the validator/hash change detector."""

from docs_indexer.detect.change_detector import ChangeDetector, Detection, DetectionMethod, DetectionStatus
from docs_indexer.detect.prefilter import can_skip, prefilter_candidates

__all__ = [
    "ChangeDetector",
    "Detection",
    "DetectionMethod",
    "DetectionStatus",
    "can_skip",
    "prefilter_candidates",
]
