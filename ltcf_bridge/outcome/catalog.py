"""
Element catalog: domain code token to section and display text.

The catalog is exported from the CIHI error/element mapping workbook, sheet
``elementMap``, with a header row and the columns:

    iCodeName    interRAI token (iA9, iU2) or a plain element code (B1)
    elementName  friendly display text
    Section      CIHI section label (A9, R7, S2)
    DbSection    optional override of Section for the database letter

A CSV export with the same header is accepted as well.
"""

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from openpyxl import load_workbook

from ltcf_bridge.exceptions import CatalogError

logger = logging.getLogger(__name__)

SHEET_NAME = "elementMap"

ELEMENT_CODE_PATTERN = re.compile(r"([A-Za-z][0-9]+[a-z]?)")


@dataclass(frozen=True)
class CatalogEntry:
    """Resolution of a code token."""

    section: str
    display_code: str
    display_name: str

    @property
    def friendly_name(self) -> str:
        """Text substituted for the token in rewritten messages."""
        return self.display_name or self.display_code


def _first_letter(value: str) -> str:
    for ch in value.strip().upper():
        if "A" <= ch <= "Z":
            return ch
    return ""


def _display_code(db_section: str, section: str) -> str:
    pick = (db_section or section).strip()
    match = ELEMENT_CODE_PATTERN.search(pick)
    if not match:
        return ""
    code = match.group(1)
    return code[0].upper() + code[1:]


def _cell(row: Sequence[object], index: int) -> str:
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


class ElementCatalog:
    """Case-insensitive lookup of code tokens, loaded once."""

    def __init__(self) -> None:
        self._entries: dict[str, CatalogEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def resolve(self, token: str) -> CatalogEntry | None:
        """Resolve a code token such as iA9, cihiA9 or B1."""
        if not token or not token.strip():
            return None
        return self._entries.get(token.strip().lower())

    def add(
        self, key: str, display_name: str, section: str, db_section: str = ""
    ) -> bool:
        """
        Register one mapping row.

        Returns False when the row has no key or no usable section letter.
        """
        key = key.strip()
        if not key:
            return False
        letter = _first_letter(db_section or section)
        if not letter:
            return False

        entry = CatalogEntry(
            section=letter,
            display_code=_display_code(db_section, section),
            display_name=display_name.strip(),
        )
        self._entries[key.lower()] = entry

        # cihiA5a and iA5a are interchangeable; an explicit row wins
        lowered = key.lower()
        if lowered.startswith("cihi"):
            self._entries.setdefault("i" + lowered[4:], entry)
        elif lowered.startswith("i"):
            self._entries.setdefault("cihi" + lowered[1:], entry)
        return True

    @classmethod
    def from_rows(cls, rows: Iterable[Sequence[object]]) -> "ElementCatalog":
        """Build a catalog from data rows (header row already removed)."""
        catalog = cls()
        for row in rows:
            catalog.add(_cell(row, 0), _cell(row, 1), _cell(row, 2), _cell(row, 3))
        return catalog

    @classmethod
    def load(cls, path: str | Path) -> "ElementCatalog":
        """
        Load the catalog from an .xlsx workbook or a .csv export.

        Raises:
            FileNotFoundError: If the file does not exist.
            CatalogError: If the workbook has no elementMap sheet or the
                format is not supported.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Element mapping not found: {path}")

        suffix = path.suffix.lower()
        if suffix in (".xlsx", ".xlsm"):
            catalog = cls.from_rows(_read_workbook(path))
        elif suffix == ".csv":
            catalog = cls.from_rows(_read_csv(path))
        else:
            raise CatalogError(f"Unsupported element mapping format: {path.suffix}")

        logger.info("Loaded %d element mapping keys from %s", len(catalog), path)
        return catalog


def _read_workbook(path: Path) -> list[tuple[object, ...]]:
    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        if SHEET_NAME not in wb.sheetnames:
            raise CatalogError(f"Worksheet '{SHEET_NAME}' not found in {path.name}")
        ws = wb[SHEET_NAME]
        return [tuple(row) for row in ws.iter_rows(min_row=2, values_only=True)]
    finally:
        wb.close()


def _read_csv(path: Path) -> list[tuple[str, ...]]:
    with path.open(newline="", encoding="utf-8-sig") as f:
        rows = list(csv.reader(f))
    return [tuple(row) for row in rows[1:]]
