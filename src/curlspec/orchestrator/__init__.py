"""Extraction orchestration subsystem for curlspec.

This module implements per-command analysis, collection metadata
reconciliation and the orchestrator arbitrating between the document
strategy and the per-command fallback.
"""

from curlspec.orchestrator.analyzer import (
    CommandAnalysis,
    CommandAnalyzer,
    ConfidenceWeights,
    ExtractedElements,
    infer_parameters,
    score_confidence,
)
from curlspec.orchestrator.extractor import (
    MAX_DOCUMENT_CHARACTERS,
    ExtractionOrchestrator,
    validate_document,
)
from curlspec.orchestrator.metadata import (
    common_headers,
    common_origin,
    detect_authentication,
    infer_context,
    reconcile_metadata,
)

__all__ = [
    # Analyzer
    "CommandAnalysis",
    "CommandAnalyzer",
    "ConfidenceWeights",
    "ExtractedElements",
    "infer_parameters",
    "score_confidence",
    # Metadata
    "common_headers",
    "common_origin",
    "detect_authentication",
    "infer_context",
    "reconcile_metadata",
    # Orchestrator
    "ExtractionOrchestrator",
    "MAX_DOCUMENT_CHARACTERS",
    "validate_document",
]
