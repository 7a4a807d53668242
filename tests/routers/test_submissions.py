"""Tests for submission endpoint."""

import asyncio
import base64
from unittest.mock import AsyncMock

import pytest

from ltcf_bridge.clients.identity import (
    get_identity_resolver,
    get_submission_lock,
    reset_identity_resolver,
)
from ltcf_bridge.outcome.evaluator import EvaluationMethod, OutcomeEvaluation
from ltcf_bridge.outcome.reconciler import AppendNote, MarkIncomplete
from ltcf_bridge.pipeline import RecordResult, RecordStatus
from ltcf_bridge.schemas.submission_schemas import MAX_BASE64_SIZE
from ltcf_bridge.services.clarity_gateway import WriteBackResult
from ltcf_bridge.services.irrs_service import SubmissionResponse
from ltcf_bridge.submission.identity import IdentityResolver
from ltcf_bridge.submission.metadata import ParsedRecord, RecordMetadata
from tests.conftest import ClientFactory


def encoded(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


def metadata() -> RecordMetadata:
    return RecordMetadata(
        patient_id="pat-900",
        patient_key="PK-1001",
        patient_operation="CREATE",
        encounter_id="enc-900",
        encounter_key="EK-2001",
        encounter_operation="CREATE",
        assessment_id="qr-900",
        rec_id="5001",
        assessment_operation="CREATE",
        assessment_type="First Assessment",
    )


class TestSubmissionEndpoint:
    """Tests for the /submissions endpoint."""

    @pytest.mark.anyio
    async def test_submission_pass(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        """A passing record returns the ids issued by IRRS."""
        mock_pipeline.process_record.return_value = RecordResult(
            status=RecordStatus.PASS,
            metadata=metadata(),
            bundle_id="bundle-1",
            bundle_xml="<Bundle/>",
            response=SubmissionResponse(200, "<Bundle/>", "TX-1"),
            evaluation=OutcomeEvaluation(
                passed=True, method=EvaluationMethod.STRUCTURAL
            ),
            write_back=WriteBackResult(succeeded=4),
        )

        async with client_factory() as client:
            response = await client.post(
                "/submissions", json={"data": encoded(sample_flat_text)}
            )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "PASS"
        assert data["rec_id"] == "5001"
        assert data["transaction_id"] == "TX-1"
        assert data["evaluation_method"] == "structural"
        assert data["patient_id"] == "pat-900"
        assert data["assessment_id"] == "qr-900"
        assert data["bundle_xml"] is None
        assert data["write_back_failures"] == 0

        record = mock_pipeline.process_record.call_args.args[0]
        assert record.admin["rec_id"] == "5001"
        assert mock_pipeline.process_record.call_args.kwargs["dry_run"] is False

    @pytest.mark.anyio
    async def test_submission_fail_returns_notes(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        """A FAIL outcome is a normal response carrying section notes."""
        mock_pipeline.process_record.return_value = RecordResult(
            status=RecordStatus.FAIL,
            metadata=metadata(),
            response=SubmissionResponse(422, "<OperationOutcome/>"),
            evaluation=OutcomeEvaluation(
                passed=False, method=EvaluationMethod.STRUCTURAL
            ),
            instructions=[
                AppendNote("A", "5001", "<br>Item: A - Invalid Marital Status"),
                MarkIncomplete("5001"),
            ],
            write_back=WriteBackResult(
                succeeded=2, failed=1, errors=["update_submission_status: down"]
            ),
        )

        async with client_factory() as client:
            response = await client.post(
                "/submissions", json={"data": encoded(sample_flat_text)}
            )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "FAIL"
        assert data["patient_id"] is None
        assert data["notes"] == [
            {"section": "A", "note": "<br>Item: A - Invalid Marital Status"}
        ]
        assert data["write_back_failures"] == 1
        assert data["errors"] == ["update_submission_status: down"]

    @pytest.mark.anyio
    async def test_dry_run_returns_bundle(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        mock_pipeline.process_record.return_value = RecordResult(
            status=RecordStatus.BUILT,
            metadata=metadata(),
            bundle_id="bundle-1",
            bundle_xml="<Bundle/>",
        )

        async with client_factory() as client:
            response = await client.post(
                "/submissions",
                json={"data": encoded(sample_flat_text), "dry_run": True},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "BUILT"
        assert data["bundle_xml"] == "<Bundle/>"
        assert data["patient_id"] is None
        assert mock_pipeline.process_record.call_args.kwargs["dry_run"] is True

    @pytest.mark.anyio
    async def test_invalid_record_returns_422(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        mock_pipeline.process_record.return_value = RecordResult(
            status=RecordStatus.INVALID,
            metadata=metadata(),
            error="Patient UPDATE requires an existing Patient id",
        )

        async with client_factory() as client:
            response = await client.post(
                "/submissions", json={"data": encoded(sample_flat_text)}
            )

        assert response.status_code == 422
        assert "Patient UPDATE" in response.json()["detail"]

    @pytest.mark.anyio
    async def test_transport_error_returns_503(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        mock_pipeline.process_record.return_value = RecordResult(
            status=RecordStatus.ERROR,
            metadata=metadata(),
            error="IRRS request failed: timed out",
        )

        async with client_factory() as client:
            response = await client.post(
                "/submissions", json={"data": encoded(sample_flat_text)}
            )

        assert response.status_code == 503
        assert response.json()["detail"] == "IRRS request failed: timed out"

    @pytest.mark.anyio
    async def test_invalid_base64(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
    ) -> None:
        """Data that is not base64 is rejected before processing."""
        async with client_factory() as client:
            response = await client.post(
                "/submissions", json={"data": "not base64!!"}
            )

        assert response.status_code == 400
        assert "Failed to decode base64" in response.json()["detail"]
        mock_pipeline.process_record.assert_not_called()

    @pytest.mark.anyio
    async def test_data_too_large(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
    ) -> None:
        async with client_factory() as client:
            response = await client.post(
                "/submissions", json={"data": "A" * (MAX_BASE64_SIZE + 1)}
            )

        assert response.status_code == 422
        mock_pipeline.process_record.assert_not_called()

    @pytest.mark.anyio
    async def test_records_are_processed_one_at_a_time(
        self,
        client_factory: ClientFactory,
        mock_pipeline: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        """Concurrent requests never interleave inside the pipeline."""
        events: list[str] = []

        async def process_record(
            record: ParsedRecord, dry_run: bool = False
        ) -> RecordResult:
            events.append(f"start {record.admin['rec_id']}")
            await asyncio.sleep(0.01)
            events.append(f"end {record.admin['rec_id']}")
            return RecordResult(status=RecordStatus.BUILT, metadata=metadata())

        mock_pipeline.process_record.side_effect = process_record
        second = sample_flat_text.replace("rec_id=5001", "rec_id=5002")

        async with client_factory() as client:
            responses = await asyncio.gather(
                client.post("/submissions", json={"data": encoded(sample_flat_text)}),
                client.post("/submissions", json={"data": encoded(second)}),
            )

        assert [r.status_code for r in responses] == [200, 200]
        assert [event.split()[0] for event in events] == [
            "start",
            "end",
            "start",
            "end",
        ]
        assert events[0].split()[1] == events[1].split()[1]


class TestIdentityCacheReset:
    """Tests for the /submissions/identity-cache endpoint."""

    @pytest.mark.anyio
    async def test_reset_clears_cached_ids(
        self,
        client_factory: ClientFactory,
        identity_resolver: IdentityResolver,
    ) -> None:
        identity_resolver.cache.put("PK-1001", "pat-900")
        identity_resolver.cache.put("EK-2001", "enc-900")

        async with client_factory() as client:
            response = await client.delete("/submissions/identity-cache")

        assert response.status_code == 200
        assert response.json() == {"cleared": 2}
        assert len(identity_resolver.cache) == 0

    def test_reset_ends_the_run(self) -> None:
        """After a reset the providers hand out a fresh resolver and lock."""
        resolver = get_identity_resolver()
        lock = get_submission_lock()
        resolver.cache.put("PK-1001", "pat-900")

        reset_identity_resolver()

        assert get_identity_resolver() is not resolver
        assert len(get_identity_resolver().cache) == 0
        assert get_submission_lock() is not lock
        reset_identity_resolver()
