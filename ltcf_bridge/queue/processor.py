"""
Batch processing of queued LTCF flat files.

Layout under the transmit root:

    <root>/Queued/*.dat                          files waiting for submission
    <root>/RunLogs/Processed|Errored/            bundles and IRRS responses
    <root>/<fiscal>/<Qn-fiscal>/Processed|Errored/   routed flat files

Files are processed oldest first. The timestamp comes from a name like
``20250726-163602117-...``; files without one fall back to their mtime.
Fiscal year and quarter come from the file name and are overridden by the
ADMIN section when it carries them.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from ltcf_bridge.parsers.flat_file import parse_flat_file
from ltcf_bridge.pipeline import RecordResult, SubmissionPipeline
from ltcf_bridge.submission.metadata import RecordMetadata

logger = logging.getLogger(__name__)

QUEUED_FOLDER = "Queued"
RUN_LOGS_FOLDER = "RunLogs"
PROCESSED_FOLDER = "Processed"
ERRORED_FOLDER = "Errored"
UNKNOWN_FISCAL = "Unknown"
DEFAULT_QUARTER = "Q1"

_LEADING_DIGITS = re.compile(r"\d+")


def name_timestamp(name: str) -> datetime | None:
    """UTC timestamp from a ``yyyyMMdd-HHmmss...`` file name, if present."""
    parts = Path(name).stem.split("-")
    if len(parts) < 2:
        return None
    date_part, time_part = parts[0], parts[1]
    if len(date_part) != 8 or len(time_part) < 6:
        return None
    try:
        parsed = datetime.strptime(date_part + time_part[:6], "%Y%m%d%H%M%S")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def _sort_key(path: Path) -> datetime:
    stamp = name_timestamp(path.name)
    if stamp is not None:
        return stamp
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


def queued_files(folder: str | Path, pattern: str = "*.dat") -> list[Path]:
    """
    List queued files oldest first.

    Raises:
        FileNotFoundError: If the queue folder does not exist.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Queued folder not found: {folder}")
    files = [path for path in folder.glob(pattern) if path.is_file()]
    return sorted(files, key=_sort_key)


def normalize_quarter(value: str | None) -> str | None:
    """
    Canonical quarter ("Q1".."Q4") for loose inputs.

    Accepts forms such as "1", "01", "Q2", "Q3-2025" and "Quarter4".
    Returns None when the value is not recognized.
    """
    if not value or not value.strip():
        return None
    text = value.strip().upper()

    if "-" in text:
        part = next((p for p in text.split("-") if p.startswith("Q")), None)
        if part:
            text = part

    if text.startswith("QUARTER"):
        text = text[len("QUARTER") :].strip()
    elif text.startswith("Q"):
        text = text[1:]

    match = _LEADING_DIGITS.match(text)
    if not match or len(match.group(0)) > 2:
        return None
    number = int(match.group(0))
    if 1 <= number <= 4:
        return f"Q{number}"
    return None


def fiscal_from_name(path: str | Path) -> str | None:
    """Fiscal year from the first four digits of the file name."""
    head = Path(path).stem.split("-")[0]
    if len(head) >= 4 and head[:4].isdigit():
        return head[:4]
    return None


def quarter_from_name(path: str | Path) -> str | None:
    """Quarter from the last ``-0N`` token of a four-part file name."""
    parts = Path(path).stem.split("-")
    if len(parts) >= 4:
        return normalize_quarter(parts[-1])
    return None


@dataclass(frozen=True)
class Routing:
    """Destination folder naming for one file."""

    fiscal: str
    quarter: str

    @property
    def quarter_folder(self) -> str:
        return f"{self.quarter}-{self.fiscal}"


def routing_for(path: str | Path, metadata: RecordMetadata | None = None) -> Routing:
    """Fiscal and quarter for a file; ADMIN values win over the file name."""
    fiscal = (metadata.fiscal if metadata else "") or fiscal_from_name(path)
    quarter = normalize_quarter(metadata.quarter if metadata else None)
    return Routing(
        fiscal=fiscal or UNKNOWN_FISCAL,
        quarter=quarter or quarter_from_name(path) or DEFAULT_QUARTER,
    )


@dataclass
class FileOutcome:
    """Result of processing one queued file."""

    path: Path
    passed: bool
    routing: Routing
    destination: Path | None = None
    result: RecordResult | None = None
    error: str | None = None


@dataclass
class QueueSummary:
    """Outcome of one queue run."""

    files: list[FileOutcome] = field(default_factory=list)
    stopped: bool = False

    @property
    def total(self) -> int:
        return len(self.files)

    @property
    def processed(self) -> int:
        return sum(1 for outcome in self.files if outcome.passed)

    @property
    def errored(self) -> int:
        return self.total - self.processed


class QueueProcessor:
    """Walks the Queued folder and runs each file through the pipeline."""

    def __init__(
        self,
        pipeline: SubmissionPipeline,
        transmit_root: str | Path,
        pattern: str = "*.dat",
        dry_run: bool = False,
    ):
        self.pipeline = pipeline
        self.transmit_root = Path(transmit_root)
        self.pattern = pattern
        self.dry_run = dry_run

    @property
    def queued_folder(self) -> Path:
        return self.transmit_root / QUEUED_FOLDER

    @property
    def run_logs_folder(self) -> Path:
        return self.transmit_root / RUN_LOGS_FOLDER

    async def run(self, stop_event: asyncio.Event | None = None) -> QueueSummary:
        """
        Process every queued file, oldest first.

        Identity caching is scoped to the run. A failing file is routed to
        Errored and the batch continues. Setting ``stop_event`` prevents
        further files from starting; the file in flight completes.

        Raises:
            FileNotFoundError: If the Queued folder does not exist.
        """
        summary = QueueSummary()
        files = queued_files(self.queued_folder, self.pattern)
        if not files:
            logger.warning("No queued files found in %s", self.queued_folder)
            return summary

        logger.info("Found %d queued file(s) in %s", len(files), self.queued_folder)
        self.pipeline.resolver.cache.clear()

        for path in files:
            if stop_event is not None and stop_event.is_set():
                logger.warning(
                    "Stop requested, leaving %d file(s) queued",
                    len(files) - summary.total,
                )
                summary.stopped = True
                break
            summary.files.append(await self.process_file(path))

        logger.info(
            "Queue run finished: %d processed, %d errored",
            summary.processed,
            summary.errored,
        )
        return summary

    async def process_file(self, path: Path) -> FileOutcome:
        """Parse, submit, save artefacts for and route one file."""
        logger.info("Processing flat file: %s", path)
        try:
            record = parse_flat_file(path)
            result = await self.pipeline.process_record(record, dry_run=self.dry_run)
        except Exception as e:
            logger.exception("Failed to process %s", path)
            outcome = FileOutcome(
                path=path, passed=False, routing=routing_for(path), error=str(e)
            )
            self._save_error(path, str(e))
            outcome.destination = self._route(path, outcome)
            return outcome

        outcome = FileOutcome(
            path=path,
            passed=result.succeeded,
            routing=routing_for(path, result.metadata),
            result=result,
            error=result.error,
        )
        self._save_artefacts(path, outcome)
        outcome.destination = self._route(path, outcome)
        return outcome

    def _status_folder(self, passed: bool) -> str:
        return PROCESSED_FOLDER if passed else ERRORED_FOLDER

    def _save_artefacts(self, path: Path, outcome: FileOutcome) -> None:
        result = outcome.result
        if result is None:
            return
        folder = self.run_logs_folder / self._status_folder(outcome.passed)
        folder.mkdir(parents=True, exist_ok=True)
        if result.bundle_xml:
            _write_text(folder / f"bundle_{path.stem}.xml", result.bundle_xml)
        if result.response is not None:
            _write_text(folder / f"runlog_{path.stem}.xml", result.response.text)
        elif result.error:
            _write_text(folder / f"runlog_{path.stem}.txt", result.error)

    def _save_error(self, path: Path, message: str) -> None:
        folder = self.run_logs_folder / ERRORED_FOLDER
        folder.mkdir(parents=True, exist_ok=True)
        _write_text(folder / f"runlog_{path.stem}.txt", message)

    def _route(self, path: Path, outcome: FileOutcome) -> Path | None:
        """Move the file and any same-named .xml into its quarter folder."""
        if self.dry_run or not path.exists():
            return None
        routing = outcome.routing
        destination = (
            self.transmit_root
            / routing.fiscal
            / routing.quarter_folder
            / self._status_folder(outcome.passed)
        )
        destination.mkdir(parents=True, exist_ok=True)

        target = path.replace(destination / path.name)
        sibling = path.with_suffix(".xml")
        if sibling.exists():
            sibling.replace(destination / sibling.name)
        logger.info("Routed %s to %s", path.name, destination)
        return target


def _write_text(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")
