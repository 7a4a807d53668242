"""
Submission assembly for IRRS LTCF records.

Resolves resource identity and operation intent for a parsed record and
assembles the FHIR transaction bundle sent to IRRS.
"""

from ltcf_bridge.submission.bundle import Bundle, BundleAssembler, ResourceEntry
from ltcf_bridge.submission.identity import IdentityCache, IdentityResolver
from ltcf_bridge.submission.metadata import Operation, ParsedRecord, RecordMetadata

__all__ = [
    "Bundle",
    "BundleAssembler",
    "IdentityCache",
    "IdentityResolver",
    "Operation",
    "ParsedRecord",
    "RecordMetadata",
    "ResourceEntry",
]
