"""
Record metadata and parsed record structures.

A flat-file record carries four logical sections: ADMIN (identity and
operation intent), PATIENT, ENCOUNTER and any number of assessment sections
keyed by section name.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from ltcf_bridge.exceptions import InvalidOperationError


class Operation(str, Enum):
    """Per-resource operation intent."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    CORRECTION = "CORRECTION"
    DELETE = "DELETE"
    USE = "USE"

    @classmethod
    def parse(cls, value: str, resource_type: str = "Resource") -> "Operation":
        """Parse an operation verb, case-insensitive.

        Raises:
            InvalidOperationError: If the verb is not recognized.
        """
        normalized = (value or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError as e:
            raise InvalidOperationError(resource_type, value) from e


# Assessment types that always start a fresh identity chain
INITIAL_ASSESSMENT_TYPES = frozenset({"FIRST ASSESSMENT", "RETURN ASSESSMENT"})

# Assessment operations that affect the submission status of the record
STATUS_TRACKED_OPERATIONS = frozenset(
    {Operation.CREATE, Operation.CORRECTION, Operation.DELETE}
)

_TRUE_VALUES = frozenset({"1", "y", "yes", "true", "t"})


@dataclass
class RecordMetadata:
    """Identity and operation intent for one submission."""

    patient_id: str = ""
    patient_key: str = ""
    patient_operation: str = ""
    encounter_id: str = ""
    encounter_key: str = ""
    encounter_operation: str = ""
    assessment_id: str = ""
    rec_id: str = ""
    assessment_operation: str = ""
    assessment_type: str = ""
    return_flag: bool = False
    fiscal: str = ""
    quarter: str = ""

    @property
    def is_return_assessment(self) -> bool:
        """True for explicit return records or a 'return' assessment type."""
        return self.return_flag or "return" in self.assessment_type.lower()

    @property
    def is_follow_up(self) -> bool:
        """True when the assessment continues an existing identity chain."""
        return self.assessment_type.strip().upper() not in INITIAL_ASSESSMENT_TYPES

    @classmethod
    def from_admin(cls, admin: Mapping[str, str]) -> "RecordMetadata":
        """Build metadata from ADMIN section fields (case-insensitive keys)."""
        lowered = {k.strip().lower(): (v or "").strip() for k, v in admin.items()}

        def get(key: str) -> str:
            return lowered.get(key.lower(), "")

        return cls(
            patient_id=get("fhirPatID"),
            patient_key=get("fhirPatKey"),
            patient_operation=get("patOper"),
            encounter_id=get("fhirEncID"),
            encounter_key=get("fhirEncKey"),
            encounter_operation=get("encOper"),
            assessment_id=get("fhirAsmID"),
            rec_id=get("rec_id"),
            assessment_operation=get("asmOper"),
            assessment_type=get("asmType"),
            return_flag=get("isReturn").lower() in _TRUE_VALUES,
            fiscal=get("fiscal"),
            quarter=get("quarter"),
        )


def _freeze(fields: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(fields))


@dataclass(frozen=True)
class ParsedRecord:
    """One flat-file record split into its logical sections."""

    admin: Mapping[str, str] = field(default_factory=dict)
    patient: Mapping[str, str] = field(default_factory=dict)
    encounter: Mapping[str, str] = field(default_factory=dict)
    assessment_sections: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "admin", _freeze(self.admin))
        object.__setattr__(self, "patient", _freeze(self.patient))
        object.__setattr__(self, "encounter", _freeze(self.encounter))
        object.__setattr__(
            self,
            "assessment_sections",
            MappingProxyType(
                {
                    name: _freeze(values)
                    for name, values in self.assessment_sections.items()
                }
            ),
        )

    @property
    def has_assessment_data(self) -> bool:
        """True when any assessment section carries at least one field."""
        return any(len(values) > 0 for values in self.assessment_sections.values())

    def metadata(self) -> RecordMetadata:
        """Build fresh metadata from the ADMIN section."""
        return RecordMetadata.from_admin(self.admin)
