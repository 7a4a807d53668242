"""Input parsers for LTCF records."""

from ltcf_bridge.parsers.flat_file import parse_flat_file, parse_flat_text

__all__ = ["parse_flat_file", "parse_flat_text"]
