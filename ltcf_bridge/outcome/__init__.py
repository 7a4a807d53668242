"""
Submission outcome handling.

Classifies IRRS responses as PASS or FAIL, extracts ids issued on success
and reconciles failures into section write-back instructions.
"""

from ltcf_bridge.outcome.catalog import CatalogEntry, ElementCatalog
from ltcf_bridge.outcome.evaluator import OutcomeEvaluation, evaluate
from ltcf_bridge.outcome.reconciler import ErrorReconciler, WriteBackInstruction
from ltcf_bridge.outcome.response_parser import ReturnedIds, extract_resource_ids

__all__ = [
    "CatalogEntry",
    "ElementCatalog",
    "ErrorReconciler",
    "OutcomeEvaluation",
    "ReturnedIds",
    "WriteBackInstruction",
    "evaluate",
    "extract_resource_ids",
]
