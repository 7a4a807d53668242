"""
Write-back to the Clarity LTCF database.

``ClarityGateway`` is the persistence seam: anything that can store ids,
submission status and section notes. ``LoggingGateway`` is the dry-run
implementation used when no database is wired in. ``WriteBackService``
applies the post-submission rules through a gateway.

Persistence failures never fail a record: they are logged and the
remaining writes still run.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from ltcf_bridge.outcome.reconciler import (
    AppendNote,
    MarkIncomplete,
    SetSectionState,
    WriteBackInstruction,
)
from ltcf_bridge.submission.metadata import (
    STATUS_TRACKED_OPERATIONS,
    Operation,
    RecordMetadata,
)

logger = logging.getLogger(__name__)

PASS = "PASS"
FAIL = "FAIL"


class ClarityGateway(Protocol):
    """Persistence operations used after a submission."""

    async def update_patient(self, patient_key: str, patient_id: str) -> int: ...

    async def update_encounter(self, encounter_key: str, encounter_id: str) -> int: ...

    async def update_assessment(self, rec_id: str, assessment_id: str) -> int: ...

    async def update_submission_status(self, rec_id: str, status: str) -> int: ...

    async def append_section_note(
        self, section: str, rec_id: str, note: str
    ) -> int: ...

    async def set_section_state(self, section: str, rec_id: str, state: str) -> int: ...

    async def mark_assessment_incomplete(self, rec_id: str) -> int: ...

    async def ping(self) -> bool: ...


@dataclass
class GatewayWrite:
    """One write issued through the LoggingGateway."""

    operation: str
    args: tuple[str, ...]


@dataclass
class LoggingGateway:
    """Dry-run gateway: logs and records writes instead of storing them."""

    writes: list[GatewayWrite] = field(default_factory=list)

    def _record(self, operation: str, *args: str) -> int:
        self.writes.append(GatewayWrite(operation, args))
        logger.info("[dry-run] %s %s", operation, " | ".join(args))
        return 1

    async def update_patient(self, patient_key: str, patient_id: str) -> int:
        return self._record("update_patient", patient_key, patient_id)

    async def update_encounter(self, encounter_key: str, encounter_id: str) -> int:
        return self._record("update_encounter", encounter_key, encounter_id)

    async def update_assessment(self, rec_id: str, assessment_id: str) -> int:
        return self._record("update_assessment", rec_id, assessment_id)

    async def update_submission_status(self, rec_id: str, status: str) -> int:
        return self._record("update_submission_status", rec_id, status)

    async def append_section_note(self, section: str, rec_id: str, note: str) -> int:
        return self._record("append_section_note", section, rec_id, note)

    async def set_section_state(self, section: str, rec_id: str, state: str) -> int:
        return self._record("set_section_state", section, rec_id, state)

    async def mark_assessment_incomplete(self, rec_id: str) -> int:
        return self._record("mark_assessment_incomplete", rec_id)

    async def ping(self) -> bool:
        return True


@dataclass
class WriteBackResult:
    """Counts of gateway calls made for one record."""

    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def _is(operation: str, expected: Operation) -> bool:
    return operation.strip().upper() == expected.value


def _is_status_tracked(operation: str) -> bool:
    return any(_is(operation, op) for op in STATUS_TRACKED_OPERATIONS)


class WriteBackService:
    """Applies post-submission updates through a ClarityGateway."""

    def __init__(self, gateway: ClarityGateway):
        self.gateway = gateway

    async def _call(
        self,
        result: WriteBackResult,
        description: str,
        func: Callable[..., Awaitable[object]],
        *args: str,
    ) -> None:
        try:
            await func(*args)
            result.succeeded += 1
        except Exception as e:
            logger.exception("Write-back %s failed", description)
            result.failed += 1
            result.errors.append(f"{description}: {e}")

    async def apply_outcome(
        self,
        metadata: RecordMetadata,
        passed: bool,
        instructions: list[WriteBackInstruction] | None = None,
    ) -> WriteBackResult:
        """
        Apply the update rules for one submission.

        On PASS, ids of resources created by this submission are stored
        against their natural keys. For status-tracked assessment
        operations the PASS/FAIL status is stored. On FAIL, reconciliation
        instructions are replayed in order.

        Args:
            metadata: Normalized metadata, with ids returned by IRRS applied
            passed: Outcome of the submission
            instructions: Write-back instructions from reconciliation

        Returns:
            Counts of successful and failed gateway calls
        """
        result = WriteBackResult()
        gateway = self.gateway

        if passed:
            if (
                _is(metadata.patient_operation, Operation.CREATE)
                and metadata.patient_key
                and metadata.patient_id
            ):
                await self._call(
                    result,
                    "update_patient",
                    gateway.update_patient,
                    metadata.patient_key,
                    metadata.patient_id,
                )
            if (
                _is(metadata.encounter_operation, Operation.CREATE)
                and metadata.encounter_key
                and metadata.encounter_id
            ):
                await self._call(
                    result,
                    "update_encounter",
                    gateway.update_encounter,
                    metadata.encounter_key,
                    metadata.encounter_id,
                )
            if (
                _is(metadata.assessment_operation, Operation.CREATE)
                and metadata.rec_id
                and metadata.assessment_id
            ):
                await self._call(
                    result,
                    "update_assessment",
                    gateway.update_assessment,
                    metadata.rec_id,
                    metadata.assessment_id,
                )

        if _is_status_tracked(metadata.assessment_operation) and metadata.rec_id:
            await self._call(
                result,
                "update_submission_status",
                gateway.update_submission_status,
                metadata.rec_id,
                PASS if passed else FAIL,
            )

        if not passed:
            for instruction in instructions or []:
                await self._apply_instruction(result, instruction)

        if result.failed:
            logger.warning(
                "Record %s: %d write-back call(s) failed",
                metadata.rec_id or "-",
                result.failed,
            )
        return result

    async def _apply_instruction(
        self, result: WriteBackResult, instruction: WriteBackInstruction
    ) -> None:
        gateway = self.gateway
        if isinstance(instruction, AppendNote):
            await self._call(
                result,
                f"append_section_note({instruction.section})",
                gateway.append_section_note,
                instruction.section,
                instruction.rec_id,
                instruction.note,
            )
        elif isinstance(instruction, SetSectionState):
            await self._call(
                result,
                f"set_section_state({instruction.section})",
                gateway.set_section_state,
                instruction.section,
                instruction.rec_id,
                instruction.state,
            )
        elif isinstance(instruction, MarkIncomplete):
            await self._call(
                result,
                "mark_assessment_incomplete",
                gateway.mark_assessment_incomplete,
                instruction.rec_id,
            )
