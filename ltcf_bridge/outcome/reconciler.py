"""
Reconcile a failed submission back onto the assessment record.

Each OperationOutcome issue is routed to one assessment section: the issue's
primary interRAI code is resolved through the element catalog, and the
message is rewritten so that code tokens read as element names. Distinct
(section, message) pairs become notes on the section and flag the section
for review. When nothing usable comes back, every section is flagged with a
standard note.
"""

import logging
import re
import string
from dataclasses import dataclass
from xml.etree.ElementTree import Element

from ltcf_bridge.exceptions import InvalidOperationError
from ltcf_bridge.outcome.catalog import ElementCatalog
from ltcf_bridge.outcome.evaluator import parse_response
from ltcf_bridge.submission.fhir_xml import find_local, iter_local, local_name, value_of
from ltcf_bridge.submission.metadata import STATUS_TRACKED_OPERATIONS, Operation

logger = logging.getLogger(__name__)

ICODE_SYSTEM_MARKER = "interrai-icode"
DEFAULT_MESSAGE = "Validation error returned by CIHI."
UNKNOWN_EXCEPTION_NOTE = (
    "Unknown exception occurred when submitting to CIHI. "
    "Please contact administrator and see runlog for more details."
)
NOTE_PREFIX = "<br>Item: "
REVIEW_STATE = "2"

# interRAI tokens in free text: iA9, iU2, iA5a
ICODE_TOKEN = re.compile(r"\bi[a-z][0-9]+[a-z]?\b", re.IGNORECASE)
# Plain element codes in free text: A8, A12, B3b
ELEMENT_TOKEN = re.compile(r"\b[A-Z][0-9]{1,3}[a-z]?\b")


@dataclass(frozen=True)
class AppendNote:
    section: str
    rec_id: str
    note: str


@dataclass(frozen=True)
class SetSectionState:
    section: str
    rec_id: str
    state: str = REVIEW_STATE


@dataclass(frozen=True)
class MarkIncomplete:
    rec_id: str


WriteBackInstruction = AppendNote | SetSectionState | MarkIncomplete


def normalize_section(section: str | None) -> str:
    """Database section letter; S items are stored under R."""
    if not section or not section.strip():
        return ""
    letter = section.strip()[0].upper()
    return "R" if letter == "S" else letter


def format_note(section: str, message: str) -> str:
    return f"{NOTE_PREFIX}{section} - {message}"


def substitute_tokens(message: str, replacements: dict[str, str]) -> str:
    """
    Replace code tokens with their friendly names.

    Longer tokens are replaced first so iA5a is never clobbered by iA5.
    A parenthesized token keeps its parentheses without inner padding.
    """
    if not message or not replacements:
        return message
    result = message
    for token in sorted(replacements, key=len, reverse=True):
        name = replacements[token]
        escaped = re.escape(token)
        result = re.sub(
            rf"\(\s*{escaped}\s*\)",
            lambda _m: f"({name})",
            result,
            flags=re.IGNORECASE,
        )
        result = re.sub(
            rf"\b{escaped}\b", lambda _m: name, result, flags=re.IGNORECASE
        )
    return result


def _coding_code(coding: Element) -> str:
    return (value_of(find_local(coding, "code")) or "").strip()


def _is_icode_coding(coding: Element) -> bool:
    system = value_of(find_local(coding, "system")) or ""
    return ICODE_SYSTEM_MARKER in system.lower()


def issue_message(issue: Element) -> str:
    """First coding display, else diagnostics, else a generic message."""
    for coding in iter_local(issue, "coding"):
        display = (value_of(find_local(coding, "display")) or "").strip()
        if display:
            return display
    diagnostics = (value_of(find_local(issue, "diagnostics")) or "").strip()
    return diagnostics or DEFAULT_MESSAGE


def primary_icode(issue: Element, message: str) -> str | None:
    """The issue's interRAI code: details codings, any coding, then the text."""
    details = find_local(issue, "details")
    candidates = list(iter_local(details, "coding")) if details is not None else []
    candidates += list(iter_local(issue, "coding"))
    for coding in candidates:
        if _is_icode_coding(coding):
            code = _coding_code(coding)
            if code:
                return code
    match = ICODE_TOKEN.search(message)
    return match.group(0) if match else None


class ErrorReconciler:
    """Turns an OperationOutcome into section write-back instructions."""

    def __init__(self, catalog: ElementCatalog):
        self.catalog = catalog

    def reconcile(
        self,
        operation_outcome_xml: str | None,
        record_id: str,
        assessment_operation: str,
    ) -> list[WriteBackInstruction]:
        """
        Build write-back instructions for a failed submission.

        Args:
            operation_outcome_xml: Raw response text, possibly prefixed
            record_id: Assessment record key in the source database
            assessment_operation: Operation verb of the assessment

        Returns:
            Notes and section states per distinct (section, message),
            plus a MarkIncomplete for status-tracked operations
        """
        rec_id = (record_id or "").strip()
        if not rec_id:
            logger.warning("No record id for reconciliation, nothing to write back")
            return []

        root = parse_response(operation_outcome_xml)
        issues = self._issues(root) if root is not None else []
        if not issues:
            logger.warning(
                "No OperationOutcome issues for record %s, flagging all sections",
                rec_id,
            )
            return self._fallback(rec_id)

        pairs: list[tuple[str, str]] = []
        seen: set[tuple[str, str]] = set()
        for issue in issues:
            resolved = self._resolve_issue(issue)
            if resolved is None:
                continue
            key = (resolved[0].lower(), resolved[1].lower())
            if key in seen:
                continue
            seen.add(key)
            pairs.append(resolved)

        if not pairs:
            logger.warning(
                "None of %d issue(s) for record %s mapped to a section, "
                "flagging all sections",
                len(issues),
                rec_id,
            )
            return self._fallback(rec_id)

        instructions: list[WriteBackInstruction] = []
        for section, message in pairs:
            note = format_note(section, message)
            instructions.append(AppendNote(section, rec_id, note))
            instructions.append(SetSectionState(section, rec_id, REVIEW_STATE))

        if _is_status_tracked(assessment_operation):
            instructions.append(MarkIncomplete(rec_id))

        logger.info(
            "Reconciled %d issue(s) into %d note(s) for record %s",
            len(issues),
            len(pairs),
            rec_id,
        )
        return instructions

    @staticmethod
    def _issues(root: Element) -> list[Element]:
        return [
            node
            for outcome in iter_local(root, "OperationOutcome")
            for node in outcome.iter()
            if local_name(node) == "issue"
        ]

    def _resolve_issue(self, issue: Element) -> tuple[str, str] | None:
        message = issue_message(issue)
        code = primary_icode(issue, message)

        if code:
            entry = self.catalog.resolve(code)
            if entry is None:
                logger.debug("Code %s is not in the element catalog, skipping", code)
                return None
            section = normalize_section(entry.section)
            replacements = {}
            for match in ICODE_TOKEN.finditer(message):
                token = match.group(0)
                resolved = self.catalog.resolve(token)
                if resolved is not None and resolved.friendly_name:
                    replacements.setdefault(token, resolved.friendly_name)
            return section, substitute_tokens(message, replacements)

        section = self._plain_code_section(issue, message)
        if not section:
            logger.debug("No code found in issue: %s", message)
            return None
        return section, message

    def _plain_code_section(self, issue: Element, message: str) -> str:
        """Section for issues that only name a plain element code (A8)."""
        plain_codes = [
            _coding_code(coding)
            for coding in iter_local(issue, "coding")
            if not _is_icode_coding(coding) and _coding_code(coding)
        ]
        text_codes = [m.group(0) for m in ELEMENT_TOKEN.finditer(message)]
        for code in plain_codes + text_codes:
            entry = self.catalog.resolve(code)
            if entry is not None:
                return normalize_section(entry.section)
        if text_codes:
            return normalize_section(text_codes[0])
        return ""

    @staticmethod
    def _fallback(rec_id: str) -> list[WriteBackInstruction]:
        instructions: list[WriteBackInstruction] = [MarkIncomplete(rec_id)]
        sections = dict.fromkeys(
            normalize_section(letter) for letter in string.ascii_uppercase
        )
        for section in sections:
            instructions.append(SetSectionState(section, rec_id, REVIEW_STATE))
            note = format_note(section, UNKNOWN_EXCEPTION_NOTE)
            instructions.append(AppendNote(section, rec_id, note))
        return instructions


def _is_status_tracked(operation: str) -> bool:
    try:
        return Operation.parse(operation) in STATUS_TRACKED_OPERATIONS
    except InvalidOperationError:
        return False
