#!/usr/bin/env python3
"""
Submit queued LTCF flat files to CIHI IRRS.

Processes every .dat file in <transmit-root>/Queued oldest first, saves the
bundle and the IRRS response under RunLogs, and routes each file to
<fiscal>/<Qn-fiscal>/Processed or Errored.

Usage:
    python scripts/run_queue.py
    python scripts/run_queue.py --transmit-root /data/ltcf --dry-run
    python scripts/run_queue.py --submit-xml saved_bundle.xml

Configuration (IRRS endpoint, token endpoint, signing key, element mapping)
comes from environment variables or .env, see ltcf_bridge/settings.py.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from ltcf_bridge.clients.clarity import get_clarity_gateway
from ltcf_bridge.exceptions import BridgeError
from ltcf_bridge.outcome.catalog import ElementCatalog
from ltcf_bridge.outcome.evaluator import evaluate
from ltcf_bridge.outcome.reconciler import ErrorReconciler
from ltcf_bridge.pipeline import SubmissionPipeline
from ltcf_bridge.queue.processor import QueueProcessor, QueueSummary
from ltcf_bridge.services.clarity_gateway import WriteBackService
from ltcf_bridge.services.irrs_service import IRRSService
from ltcf_bridge.services.token_service import TokenService
from ltcf_bridge.settings import settings
from ltcf_bridge.submission.identity import IdentityResolver


def load_catalog(mapping: str | None) -> ElementCatalog:
    """Load the element catalog, or an empty one when no mapping is given."""
    if not mapping:
        logging.getLogger(__name__).warning(
            "No element mapping configured, error notes will not resolve sections"
        )
        return ElementCatalog()
    return ElementCatalog.load(mapping)


async def run_queue(args: argparse.Namespace) -> QueueSummary:
    """Process the queue once."""
    irrs = None if args.dry_run else IRRSService(token_service=TokenService())
    pipeline = SubmissionPipeline(
        resolver=IdentityResolver(),
        reconciler=ErrorReconciler(load_catalog(args.mapping)),
        write_back=WriteBackService(get_clarity_gateway()),
        irrs=irrs,
    )
    processor = QueueProcessor(
        pipeline,
        transmit_root=args.transmit_root,
        pattern=args.pattern,
        dry_run=args.dry_run,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on Windows event loops
            pass

    try:
        return await processor.run(stop_event)
    finally:
        if irrs is not None:
            await irrs.close()


async def submit_saved_bundle(path: Path) -> bool:
    """Submit an existing bundle XML file and print the outcome."""
    irrs = IRRSService(token_service=TokenService())
    try:
        response = await irrs.submit_xml(path.read_text(encoding="utf-8-sig"))
    finally:
        await irrs.close()

    evaluation = evaluate(response.text)
    print(f"HTTP status:    {response.status_code}")
    print(f"Transaction id: {response.transaction_id or '-'}")
    print(f"Outcome:        {evaluation.status} ({evaluation.method.value})")
    if evaluation.reason:
        print(f"Reason:         {evaluation.reason}")
    for issue in evaluation.issues:
        print(f"  [{issue.severity}] {issue.diagnostics or issue.code}")
    return evaluation.passed


def print_summary(summary: QueueSummary) -> None:
    print("\nQueue run complete:")
    print(f"  Files:     {summary.total}")
    print(f"  Processed: {summary.processed}")
    print(f"  Errored:   {summary.errored}")
    if summary.stopped:
        print("  Stopped before the queue was empty")
    for outcome in summary.files:
        status = "OK" if outcome.passed else "FAILED"
        result_status = outcome.result.status.value if outcome.result else "ERROR"
        print(f"    [{status}] {outcome.path.name} ({result_status})")
        if outcome.error:
            print(f"        Error: {outcome.error}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Submit queued LTCF flat files to CIHI IRRS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--transmit-root",
        default=settings.transmit_root,
        help="Root folder holding Queued and RunLogs (default: TRANSMIT_ROOT)",
    )
    parser.add_argument(
        "--pattern",
        default=settings.queue_pattern,
        help="Glob for queued files (default: %(default)s)",
    )
    parser.add_argument(
        "--mapping",
        default=settings.element_mapping_path,
        help="Element mapping workbook or CSV (default: ELEMENT_MAPPING_PATH)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Build bundles without submitting, writing back or moving files",
    )
    parser.add_argument(
        "--submit-xml",
        type=Path,
        help="Submit an existing bundle XML file instead of processing the queue",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Log level (default: %(default)s)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.submit_xml:
            if not args.submit_xml.is_file():
                print(f"Error: File not found: {args.submit_xml}", file=sys.stderr)
                sys.exit(1)
            passed = asyncio.run(submit_saved_bundle(args.submit_xml))
            sys.exit(0 if passed else 2)

        summary = asyncio.run(run_queue(args))
        print_summary(summary)
        if summary.errored:
            sys.exit(2)
    except (BridgeError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
