"""Tests for batch processing of queued flat files."""

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from ltcf_bridge.exceptions import SubmissionError
from ltcf_bridge.outcome.catalog import ElementCatalog
from ltcf_bridge.outcome.reconciler import ErrorReconciler
from ltcf_bridge.pipeline import RecordStatus, SubmissionPipeline
from ltcf_bridge.queue import QueueProcessor, normalize_quarter
from ltcf_bridge.queue.processor import (
    Routing,
    fiscal_from_name,
    name_timestamp,
    quarter_from_name,
    queued_files,
    routing_for,
)
from ltcf_bridge.services.clarity_gateway import LoggingGateway, WriteBackService
from ltcf_bridge.services.irrs_service import SubmissionResponse
from ltcf_bridge.submission.identity import IdentityResolver
from ltcf_bridge.submission.metadata import RecordMetadata

FILE_NAME = "20250726-163602117-5001-03.dat"


@pytest.fixture
def transmit_root(tmp_path: Path) -> Path:
    (tmp_path / "Queued").mkdir()
    return tmp_path


@pytest.fixture
def pipeline(
    catalog: ElementCatalog, mock_irrs_service: AsyncMock
) -> SubmissionPipeline:
    return SubmissionPipeline(
        resolver=IdentityResolver(),
        reconciler=ErrorReconciler(catalog),
        write_back=WriteBackService(LoggingGateway()),
        irrs=mock_irrs_service,
    )


def queue_file(root: Path, name: str, content: str) -> Path:
    path = root / "Queued" / name
    path.write_text(content, encoding="utf-8")
    return path


def irrs_reply(text: str) -> SubmissionResponse:
    return SubmissionResponse(status_code=200, text=text, transaction_id="TX")


class TestNameParsing:
    """Tests for values derived from queued file names."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("1", "Q1"),
            ("01", "Q1"),
            ("Q2", "Q2"),
            ("q3-2025", "Q3"),
            ("Quarter4", "Q4"),
            ("Q5", None),
            ("0", None),
            ("", None),
            (None, None),
            ("autumn", None),
        ],
    )
    def test_normalize_quarter(self, value: str | None, expected: str | None) -> None:
        assert normalize_quarter(value) == expected

    def test_name_timestamp(self) -> None:
        assert name_timestamp(FILE_NAME) == datetime(
            2025, 7, 26, 16, 36, 2, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("name", ["record.dat", "2025-163602.dat", "x-y.dat"])
    def test_name_without_timestamp(self, name: str) -> None:
        assert name_timestamp(name) is None

    def test_fiscal_and_quarter_from_name(self) -> None:
        """The quarter needs the four-part naming convention."""
        assert fiscal_from_name(FILE_NAME) == "2025"
        assert quarter_from_name(FILE_NAME) == "Q3"
        assert fiscal_from_name("record.dat") is None
        assert quarter_from_name("20250726-163602-03.dat") is None

    def test_admin_values_win(self) -> None:
        metadata = RecordMetadata(fiscal="2024", quarter="4")

        assert routing_for(FILE_NAME, metadata) == Routing("2024", "Q4")
        assert routing_for(FILE_NAME) == Routing("2025", "Q3")

    def test_defaults(self) -> None:
        routing = routing_for("record.dat")

        assert routing == Routing("Unknown", "Q1")
        assert routing.quarter_folder == "Q1-Unknown"


class TestQueuedFiles:
    """Tests for queue ordering."""

    def test_oldest_first(self, transmit_root: Path) -> None:
        """Name timestamps order files; others fall back to mtime."""
        late = queue_file(transmit_root, "20250726-163602-b.dat", "")
        early = queue_file(transmit_root, "20250101-090000-a.dat", "")
        undated = queue_file(transmit_root, "manual.dat", "")
        stamp = datetime(2025, 3, 1, tzinfo=timezone.utc).timestamp()
        os.utime(undated, (stamp, stamp))
        queue_file(transmit_root, "notes.txt", "")

        assert queued_files(transmit_root / "Queued") == [early, undated, late]

    def test_missing_folder(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            queued_files(tmp_path / "Queued")


class TestQueueProcessor:
    """Tests for QueueProcessor.run."""

    @pytest.mark.anyio
    async def test_pass_is_routed_to_processed(
        self,
        transmit_root: Path,
        pipeline: SubmissionPipeline,
        mock_irrs_service: AsyncMock,
        sample_flat_text: str,
        transaction_response_xml: str,
    ) -> None:
        """ADMIN fiscal and quarter choose the destination folder."""
        mock_irrs_service.submit_xml.return_value = irrs_reply(transaction_response_xml)
        queue_file(transmit_root, FILE_NAME, sample_flat_text)
        stem = Path(FILE_NAME).stem

        summary = await QueueProcessor(pipeline, transmit_root).run()

        assert (summary.total, summary.processed, summary.errored) == (1, 1, 0)
        destination = transmit_root / "2025" / "Q2-2025" / "Processed"
        assert summary.files[0].destination == destination / FILE_NAME
        assert (destination / FILE_NAME).exists()
        assert not (transmit_root / "Queued" / FILE_NAME).exists()
        logs = transmit_root / "RunLogs" / "Processed"
        assert (logs / f"bundle_{stem}.xml").read_text().startswith("<?xml")
        assert (logs / f"runlog_{stem}.xml").read_text() == transaction_response_xml

    @pytest.mark.anyio
    async def test_fail_is_routed_to_errored(
        self,
        transmit_root: Path,
        pipeline: SubmissionPipeline,
        mock_irrs_service: AsyncMock,
        sample_flat_text: str,
        operation_outcome_xml: str,
    ) -> None:
        mock_irrs_service.submit_xml.return_value = irrs_reply(operation_outcome_xml)
        queue_file(transmit_root, FILE_NAME, sample_flat_text)

        summary = await QueueProcessor(pipeline, transmit_root).run()

        assert summary.files[0].result.status == RecordStatus.FAIL
        assert summary.errored == 1
        assert (transmit_root / "2025" / "Q2-2025" / "Errored" / FILE_NAME).exists()
        assert (transmit_root / "RunLogs" / "Errored").is_dir()

    @pytest.mark.anyio
    async def test_transport_error_writes_text_runlog(
        self,
        transmit_root: Path,
        pipeline: SubmissionPipeline,
        mock_irrs_service: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        mock_irrs_service.submit_xml.side_effect = SubmissionError("IRRS unreachable")
        queue_file(transmit_root, FILE_NAME, sample_flat_text)
        stem = Path(FILE_NAME).stem

        summary = await QueueProcessor(pipeline, transmit_root).run()

        assert summary.files[0].error == "IRRS unreachable"
        runlog = transmit_root / "RunLogs" / "Errored" / f"runlog_{stem}.txt"
        assert runlog.read_text() == "IRRS unreachable"

    @pytest.mark.anyio
    async def test_unreadable_file_continues_batch(
        self,
        transmit_root: Path,
        pipeline: SubmissionPipeline,
        mock_irrs_service: AsyncMock,
        sample_flat_text: str,
        transaction_response_xml: str,
    ) -> None:
        """A file that cannot be parsed is routed by its name alone."""
        mock_irrs_service.submit_xml.return_value = irrs_reply(transaction_response_xml)
        bad = transmit_root / "Queued" / "20250101-090000-4000-01.dat"
        bad.write_bytes(b"[ADMIN]\nrec_id=\xff\xfe\n")
        bad.with_suffix(".xml").write_text("<Bundle/>")
        queue_file(transmit_root, FILE_NAME, sample_flat_text)

        summary = await QueueProcessor(pipeline, transmit_root).run()

        assert [outcome.passed for outcome in summary.files] == [False, True]
        assert "not UTF-8" in summary.files[0].error
        errored = transmit_root / "2025" / "Q1-2025" / "Errored"
        assert (errored / bad.name).exists()
        assert (errored / "20250101-090000-4000-01.xml").exists()

    @pytest.mark.anyio
    async def test_dry_run_leaves_files_queued(
        self,
        transmit_root: Path,
        pipeline: SubmissionPipeline,
        mock_irrs_service: AsyncMock,
        sample_flat_text: str,
    ) -> None:
        path = queue_file(transmit_root, FILE_NAME, sample_flat_text)

        summary = await QueueProcessor(pipeline, transmit_root, dry_run=True).run()

        assert summary.files[0].result.status == RecordStatus.BUILT
        assert summary.files[0].destination is None
        assert path.exists()
        mock_irrs_service.submit_xml.assert_not_awaited()
        bundle = transmit_root / "RunLogs" / "Processed" / f"bundle_{path.stem}.xml"
        assert bundle.exists()

    @pytest.mark.anyio
    async def test_stop_event(
        self,
        transmit_root: Path,
        pipeline: SubmissionPipeline,
        sample_flat_text: str,
    ) -> None:
        """No file starts once a stop is requested."""
        path = queue_file(transmit_root, FILE_NAME, sample_flat_text)
        stop = asyncio.Event()
        stop.set()

        summary = await QueueProcessor(pipeline, transmit_root).run(stop)

        assert summary.stopped is True
        assert summary.total == 0
        assert path.exists()

    @pytest.mark.anyio
    async def test_cache_is_scoped_to_run(
        self,
        transmit_root: Path,
        pipeline: SubmissionPipeline,
        sample_flat_text: str,
    ) -> None:
        pipeline.resolver.cache.put("PK-STALE", "pat-old")
        queue_file(transmit_root, FILE_NAME, sample_flat_text)

        await QueueProcessor(pipeline, transmit_root, dry_run=True).run()

        assert "PK-STALE" not in pipeline.resolver.cache

    @pytest.mark.anyio
    async def test_empty_queue(
        self, transmit_root: Path, pipeline: SubmissionPipeline
    ) -> None:
        summary = await QueueProcessor(pipeline, transmit_root).run()

        assert summary.total == 0
        assert summary.stopped is False
