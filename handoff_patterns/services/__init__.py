"""
Pipeline services for symptom pattern surfacing.

This package contains the concern extractor, the pure pattern detector,
the event correlator and the orchestrator that ties them together.
"""

from .concern_extractor import ConcernExtractor, ExtractionConfig
from .event_correlator import EventCorrelator
from .pattern_analysis import PatternAnalysisService, pattern_hash

__all__ = [
    "ConcernExtractor",
    "ExtractionConfig",
    "EventCorrelator",
    "PatternAnalysisService",
    "pattern_hash",
]
