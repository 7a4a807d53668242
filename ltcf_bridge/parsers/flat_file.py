"""
Parser for Clarity LTCF flat files.

A flat file is a sequence of ``[SECTION]`` headers, each followed by
``key=value`` lines. ADMIN, PATIENT and ENCOUNTER are fixed sections; every
other header starts an assessment section. Blank lines, lines before the
first header and lines without ``=`` are ignored.
"""

from pathlib import Path

from ltcf_bridge.exceptions import ParseError
from ltcf_bridge.submission.metadata import ParsedRecord

FIXED_SECTIONS = ("ADMIN", "PATIENT", "ENCOUNTER")


def parse_flat_text(content: str) -> ParsedRecord:
    """
    Parse flat-file content.

    Args:
        content: Raw flat-file text

    Returns:
        The record split into its sections
    """
    fixed: dict[str, dict[str, str]] = {name: {} for name in FIXED_SECTIONS}
    assessment: dict[str, dict[str, str]] = {}
    current: dict[str, str] | None = None

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if line.startswith("[") and line.endswith("]"):
            name = line.strip("[]").strip()
            if name.upper() in fixed:
                current = fixed[name.upper()]
            else:
                current = assessment.setdefault(name, {})
            continue

        if current is None or "=" not in line:
            continue

        key, value = line.split("=", 1)
        current[key.strip()] = value.strip()

    return ParsedRecord(
        admin=fixed["ADMIN"],
        patient=fixed["PATIENT"],
        encounter=fixed["ENCOUNTER"],
        assessment_sections=assessment,
    )


def parse_flat_file(path: str | Path) -> ParsedRecord:
    """
    Parse a flat file from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        ParseError: If the file is not valid UTF-8 text.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Flat file not found: {path}")
    try:
        content = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(f"Flat file {path.name} is not UTF-8 text: {e}") from e
    return parse_flat_text(content)
