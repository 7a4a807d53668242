"""Batch processing of queued flat files under the transmit root."""

from ltcf_bridge.queue.processor import QueueProcessor, QueueSummary, normalize_quarter

__all__ = ["QueueProcessor", "QueueSummary", "normalize_quarter"]
