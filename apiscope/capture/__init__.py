"""Network traffic classification and the per-capture event pipeline."""

from .classifier import (
    CLASSIFICATION_RULES,
    TrafficClassifier,
    detect_authentication,
    explain_request,
    parse_graphql,
)
from .pipeline import CaptureChannel, CapturePipeline

__all__ = [
    "CLASSIFICATION_RULES",
    "TrafficClassifier",
    "detect_authentication",
    "explain_request",
    "parse_graphql",
    "CaptureChannel",
    "CapturePipeline",
]
