"""Submission endpoint for LTCF flat-file records."""

import base64
import binascii
import logging

from fastapi import APIRouter, HTTPException, status

from ltcf_bridge.outcome.reconciler import AppendNote
from ltcf_bridge.parsers.flat_file import parse_flat_text
from ltcf_bridge.pipeline import RecordResult, RecordStatus
from ltcf_bridge.routers.deps import (
    IdentityResolverDep,
    SubmissionLockDep,
    SubmissionPipelineDep,
)
from ltcf_bridge.schemas.submission_schemas import (
    IdentityCacheReset,
    SectionNote,
    SubmissionRequest,
    SubmissionResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/submissions", tags=["Submissions"])


@router.post("", response_model=SubmissionResult)
async def submit_record(
    request: SubmissionRequest,
    pipeline: SubmissionPipelineDep,
    lock: SubmissionLockDep,
) -> SubmissionResult:
    """
    Submit one LTCF flat-file record to IRRS.

    The record is assembled into a transaction bundle, submitted, and the
    outcome written back to Clarity. A FAIL outcome is a normal response;
    its section notes are returned alongside the write-back.

    With ``dry_run`` the bundle is built and returned without being sent.
    Records are processed one at a time.
    """
    try:
        content = base64.b64decode(request.data, validate=True).decode("utf-8-sig")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Failed to decode base64 data: {e}",
        ) from e

    record = parse_flat_text(content)
    async with lock:
        result = await pipeline.process_record(record, dry_run=request.dry_run)

    if result.status == RecordStatus.INVALID:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=result.error,
        )
    if result.status == RecordStatus.ERROR:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=result.error or "IRRS submission unavailable",
        )

    return _to_response(result, include_bundle=request.dry_run)


@router.delete("/identity-cache", response_model=IdentityCacheReset)
async def reset_identity_cache(
    resolver: IdentityResolverDep,
    lock: SubmissionLockDep,
) -> IdentityCacheReset:
    """
    Start a new run: forget the resource ids cached from earlier records.

    Waits for any record in flight to finish first.
    """
    async with lock:
        cleared = len(resolver.cache)
        resolver.cache.clear()
    logger.info("Cleared %d cached id(s)", cleared)
    return IdentityCacheReset(cleared=cleared)


def _to_response(result: RecordResult, include_bundle: bool) -> SubmissionResult:
    metadata = result.metadata
    passed = result.status == RecordStatus.PASS
    write_back = result.write_back
    return SubmissionResult(
        status=result.status.value,
        rec_id=metadata.rec_id,
        bundle_id=result.bundle_id,
        transaction_id=result.response.transaction_id if result.response else None,
        evaluation_method=(
            result.evaluation.method.value if result.evaluation else None
        ),
        patient_id=(metadata.patient_id or None) if passed else None,
        encounter_id=(metadata.encounter_id or None) if passed else None,
        assessment_id=(metadata.assessment_id or None) if passed else None,
        notes=[
            SectionNote(section=instruction.section, note=instruction.note)
            for instruction in result.instructions
            if isinstance(instruction, AppendNote)
        ],
        write_back_failures=write_back.failed if write_back else 0,
        errors=write_back.errors if write_back else [],
        bundle_xml=result.bundle_xml if include_bundle else None,
    )
