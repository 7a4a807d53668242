"""
Submission pipeline - processes one LTCF record end to end.

1. Build metadata from the ADMIN section
2. Resolve ids and operations (IdentityResolver)
3. Assemble the transaction bundle (BundleAssembler)
4. Submit to IRRS, unless running dry
5. Classify the response (PASS/FAIL)
6. PASS: cache and store the ids IRRS issued
   FAIL: reconcile issues into section notes
7. Write the outcome back to Clarity
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from ltcf_bridge.exceptions import SubmissionError, ValidationError
from ltcf_bridge.outcome.evaluator import OutcomeEvaluation, evaluate
from ltcf_bridge.outcome.reconciler import ErrorReconciler, WriteBackInstruction
from ltcf_bridge.outcome.response_parser import ReturnedIds, extract_resource_ids
from ltcf_bridge.services.clarity_gateway import WriteBackResult, WriteBackService
from ltcf_bridge.services.irrs_service import IRRSService, SubmissionResponse
from ltcf_bridge.submission.bundle import BundleAssembler
from ltcf_bridge.submission.identity import IdentityResolver
from ltcf_bridge.submission.metadata import Operation, ParsedRecord, RecordMetadata

logger = logging.getLogger(__name__)


class RecordStatus(str, Enum):
    """Final state of one processed record."""

    PASS = "PASS"
    FAIL = "FAIL"
    INVALID = "INVALID"
    ERROR = "ERROR"
    BUILT = "BUILT"


@dataclass
class RecordResult:
    """Everything produced while processing one record."""

    status: RecordStatus
    metadata: RecordMetadata
    bundle_id: str | None = None
    bundle_xml: str | None = None
    response: SubmissionResponse | None = None
    evaluation: OutcomeEvaluation | None = None
    returned_ids: ReturnedIds | None = None
    instructions: list[WriteBackInstruction] = field(default_factory=list)
    write_back: WriteBackResult | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (RecordStatus.PASS, RecordStatus.BUILT)


def _merge_returned_id(operation: str, current: str, returned: str | None) -> str:
    """Id to keep after a PASS: the issued id, never a temporary CREATE id."""
    if returned:
        return returned
    if operation == Operation.CREATE.value:
        return ""
    return current


class SubmissionPipeline:
    """Runs records through assembly, submission and reconciliation."""

    def __init__(
        self,
        resolver: IdentityResolver,
        reconciler: ErrorReconciler,
        write_back: WriteBackService,
        irrs: IRRSService | None = None,
        assembler: BundleAssembler | None = None,
    ):
        self.resolver = resolver
        self.reconciler = reconciler
        self.write_back = write_back
        self.irrs = irrs
        self.assembler = assembler or BundleAssembler()

    async def process_record(
        self,
        record: ParsedRecord,
        dry_run: bool = False,
    ) -> RecordResult:
        """
        Process one parsed record.

        Args:
            record: Parsed flat-file record
            dry_run: Build the bundle without submitting or writing back

        Returns:
            RecordResult; validation and transport failures are reported
            in the result rather than raised
        """
        metadata = record.metadata()

        try:
            metadata = self.resolver.normalize(metadata)
            bundle = self.assembler.build_bundle(record, metadata)
        except ValidationError as e:
            logger.error("Record %s failed validation: %s", metadata.rec_id or "-", e)
            return RecordResult(
                status=RecordStatus.INVALID, metadata=metadata, error=str(e)
            )

        bundle_xml = bundle.to_xml()
        result = RecordResult(
            status=RecordStatus.BUILT,
            metadata=metadata,
            bundle_id=bundle.bundle_id,
            bundle_xml=bundle_xml,
        )

        if dry_run or self.irrs is None:
            logger.info(
                "Built bundle %s for record %s (not submitted)",
                bundle.bundle_id,
                metadata.rec_id or "-",
            )
            return result

        try:
            response = await self.irrs.submit_xml(bundle_xml)
        except SubmissionError as e:
            logger.error("Record %s was not submitted: %s", metadata.rec_id or "-", e)
            result.status = RecordStatus.ERROR
            result.error = str(e)
            return result

        result.response = response
        result.evaluation = evaluate(response.text)

        if result.evaluation.passed:
            await self._handle_pass(result, response.text)
        else:
            await self._handle_fail(result, response.text)

        logger.info(
            "Record %s: %s (%s)",
            metadata.rec_id or "-",
            result.status.value,
            result.evaluation.method.value,
        )
        return result

    async def _handle_pass(self, result: RecordResult, response_text: str) -> None:
        metadata = result.metadata
        ids = extract_resource_ids(response_text)
        merged = replace(
            metadata,
            patient_id=_merge_returned_id(
                metadata.patient_operation, metadata.patient_id, ids.patient_id
            ),
            encounter_id=_merge_returned_id(
                metadata.encounter_operation, metadata.encounter_id, ids.encounter_id
            ),
            assessment_id=_merge_returned_id(
                metadata.assessment_operation,
                metadata.assessment_id,
                ids.assessment_id,
            ),
        )
        self.resolver.update_cache(
            merged, ids.patient_id, ids.encounter_id, ids.assessment_id
        )
        result.status = RecordStatus.PASS
        result.metadata = merged
        result.returned_ids = ids
        result.write_back = await self.write_back.apply_outcome(merged, passed=True)

    async def _handle_fail(self, result: RecordResult, response_text: str) -> None:
        metadata = result.metadata
        result.status = RecordStatus.FAIL
        result.instructions = self.reconciler.reconcile(
            response_text, metadata.rec_id, metadata.assessment_operation
        )
        result.write_back = await self.write_back.apply_outcome(
            metadata, passed=False, instructions=result.instructions
        )
