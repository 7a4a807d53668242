"""
Submission outcome classification.

IRRS answers a transaction with either a ``transaction-response`` Bundle or
an OperationOutcome. Responses may arrive with log text in front of the XML
and are sometimes not well-formed at all, so classification runs in two
stages:

1. Structural: parse the XML and apply the strict rules.
2. Heuristic: if parsing fails, scan the lowercased text for error markers.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from xml.etree.ElementTree import Element

import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException

from ltcf_bridge.settings import settings
from ltcf_bridge.submission.fhir_xml import find_local, iter_local, local_name, value_of

logger = logging.getLogger(__name__)

FAILING_SEVERITIES = frozenset({"error", "fatal"})

HEURISTIC_STATUS_PATTERN = re.compile(r"status\s+value\s*=\s*[\"'][45]")
STATUS_CODE_PATTERN = re.compile(r"^[+-]?[0-9]+$")


class EvaluationMethod(str, Enum):
    """Which stage decided the outcome."""

    STRUCTURAL = "structural"
    HEURISTIC = "heuristic"
    EMPTY = "empty"


@dataclass
class Coding:
    system: str | None = None
    code: str | None = None
    display: str | None = None


@dataclass
class Issue:
    """One OperationOutcome issue."""

    severity: str | None = None
    code: str | None = None
    diagnostics: str | None = None
    codings: list[Coding] = field(default_factory=list)
    details_codings: list[Coding] = field(default_factory=list)

    @property
    def is_failure(self) -> bool:
        return (self.severity or "").strip().lower() in FAILING_SEVERITIES


@dataclass
class OutcomeEvaluation:
    """Result of classifying a submission response."""

    passed: bool
    method: EvaluationMethod
    issues: list[Issue] = field(default_factory=list)
    reason: str = ""

    @property
    def status(self) -> str:
        return "PASS" if self.passed else "FAIL"


def strip_prefix(raw: str | None) -> str:
    """Drop any text in front of the first '<'."""
    if not raw:
        return ""
    start = raw.find("<")
    return raw[start:] if start > 0 else raw


def parse_response(raw: str | None) -> Element | None:
    """Parse a response payload, or None when it is not well-formed XML."""
    text = strip_prefix(raw).strip()
    if not text.startswith("<"):
        return None
    try:
        return ET.fromstring(text)
    except (ET.ParseError, DefusedXmlException) as e:
        logger.debug("Response is not parsable XML: %s", e)
        return None


def _coding(node: Element) -> Coding:
    return Coding(
        system=value_of(find_local(node, "system")),
        code=value_of(find_local(node, "code")),
        display=value_of(find_local(node, "display")),
    )


def _codings(parent: Element | None) -> list[Coding]:
    if parent is None:
        return []
    return [_coding(node) for node in iter_local(parent, "coding")]


def extract_issues(root: Element) -> list[Issue]:
    """All issues of every OperationOutcome in the document."""
    issues = []
    for outcome in iter_local(root, "OperationOutcome"):
        for node in outcome:
            if local_name(node) != "issue":
                continue
            details = find_local(node, "details")
            issues.append(
                Issue(
                    severity=value_of(find_local(node, "severity")),
                    code=value_of(find_local(node, "code")),
                    diagnostics=value_of(find_local(node, "diagnostics")),
                    codings=_codings(node),
                    details_codings=_codings(details),
                )
            )
    return issues


def status_code(value: str | None) -> int | None:
    """Integer HTTP status of an entry, or None unless the whole value is one."""
    text = (value or "").strip()
    if not STATUS_CODE_PATTERN.match(text):
        return None
    return int(text)


def evaluate_structure(root: Element) -> OutcomeEvaluation:
    """Strict classification of a parsed response document."""
    issues = extract_issues(root)
    if any(issue.is_failure for issue in issues):
        return OutcomeEvaluation(
            passed=False,
            method=EvaluationMethod.STRUCTURAL,
            issues=issues,
            reason="OperationOutcome reported an error or fatal issue",
        )

    bundle_type = (value_of(find_local(root, "type")) or "").strip().lower()
    if local_name(root) != "Bundle" or bundle_type != "transaction-response":
        return OutcomeEvaluation(
            passed=False,
            method=EvaluationMethod.STRUCTURAL,
            issues=issues,
            reason="Response is not a transaction-response Bundle",
        )

    statuses = [
        value_of(status)
        for entry in root
        if local_name(entry) == "entry"
        for response in entry
        if local_name(response) == "response"
        for status in response
        if local_name(status) == "status" and (value_of(status) or "").strip()
    ]
    if not statuses:
        return OutcomeEvaluation(
            passed=False,
            method=EvaluationMethod.STRUCTURAL,
            issues=issues,
            reason="Response bundle has no entry statuses",
        )

    for status in statuses:
        code = status_code(status)
        if code is None or not 200 <= code < 300:
            return OutcomeEvaluation(
                passed=False,
                method=EvaluationMethod.STRUCTURAL,
                issues=issues,
                reason=f"Entry status {status!r} is not a success",
            )

    return OutcomeEvaluation(
        passed=True, method=EvaluationMethod.STRUCTURAL, issues=issues
    )


def evaluate_text(
    raw: str | None, empty_passes: bool | None = None
) -> OutcomeEvaluation:
    """Heuristic classification for payloads that are not parsable XML."""
    if empty_passes is None:
        empty_passes = settings.empty_response_passes

    if not raw or not raw.strip():
        logger.warning(
            "Empty submission response classified as %s",
            "PASS" if empty_passes else "FAIL",
        )
        return OutcomeEvaluation(
            passed=empty_passes,
            method=EvaluationMethod.EMPTY,
            reason="Empty response",
        )

    text = raw.lower()
    if (
        "operationoutcome" in text
        and "severity" in text
        and ("error" in text or "fatal" in text)
    ):
        return OutcomeEvaluation(
            passed=False,
            method=EvaluationMethod.HEURISTIC,
            reason="Response text mentions an error OperationOutcome",
        )
    if HEURISTIC_STATUS_PATTERN.search(text):
        return OutcomeEvaluation(
            passed=False,
            method=EvaluationMethod.HEURISTIC,
            reason="Response text carries a 4xx/5xx status",
        )

    return OutcomeEvaluation(passed=True, method=EvaluationMethod.HEURISTIC)


def evaluate(raw: str | None, empty_passes: bool | None = None) -> OutcomeEvaluation:
    """
    Classify a raw submission response as PASS or FAIL.

    Args:
        raw: Response text, possibly with a log prefix
        empty_passes: Override for ``settings.empty_response_passes``

    Returns:
        The evaluation; never raises for malformed input.
    """
    root = parse_response(raw)
    if root is None:
        return evaluate_text(raw, empty_passes)
    return evaluate_structure(root)
