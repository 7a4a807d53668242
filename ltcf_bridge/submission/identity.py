"""
Identity resolution for Patient, Encounter and Assessment resources.

Follow-up records (anything other than a first or return assessment) reuse
resource ids issued by IRRS for earlier records of the same run, looked up by
natural business key.
"""

import logging
import uuid
from dataclasses import replace

from ltcf_bridge.exceptions import MissingIdentifierError
from ltcf_bridge.submission.metadata import Operation, RecordMetadata

logger = logging.getLogger(__name__)

# Operations that address an existing resource and need a known id
_ID_REQUIRED = frozenset({Operation.UPDATE.value, Operation.DELETE.value})


class IdentityCache:
    """Natural key to issued resource id, scoped to one batch run.

    Last write wins. Blank keys and blank ids are never stored.
    """

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        if not key or not key.strip():
            return None
        return self._ids.get(key.strip())

    def put(self, key: str, resource_id: str | None) -> bool:
        """Store an id under a key. Returns False when either is blank."""
        if not key or not key.strip():
            return False
        if not resource_id or not resource_id.strip():
            return False
        self._ids[key.strip()] = resource_id.strip()
        return True

    def clear(self) -> None:
        self._ids.clear()

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.strip() in self._ids


def _new_id() -> str:
    return str(uuid.uuid4())


class IdentityResolver:
    """Assigns ids and operation verbs to each resource of a record."""

    def __init__(self, cache: IdentityCache | None = None):
        self.cache = cache if cache is not None else IdentityCache()

    def normalize(self, metadata: RecordMetadata) -> RecordMetadata:
        """
        Resolve ids and default operations for one record.

        Returns a normalized copy; the input is left unchanged.

        Raises:
            MissingIdentifierError: If a Patient or Encounter UPDATE/DELETE
                has no supplied id and no cached id.
        """
        patient_op = metadata.patient_operation.strip().upper() or Operation.USE.value
        encounter_op = (
            metadata.encounter_operation.strip().upper() or Operation.USE.value
        )
        assessment_op = (
            metadata.assessment_operation.strip().upper() or Operation.CREATE.value
        )

        patient_id = metadata.patient_id.strip()
        encounter_id = metadata.encounter_id.strip()
        assessment_id = metadata.assessment_id.strip()

        if metadata.is_follow_up:
            patient_id = self.cache.get(metadata.patient_key) or patient_id
            encounter_id = self.cache.get(metadata.encounter_key) or encounter_id
            assessment_id = self.cache.get(metadata.rec_id) or assessment_id
            logger.debug(
                "Follow-up %s resolved patient=%s encounter=%s assessment=%s",
                metadata.rec_id,
                patient_id or "-",
                encounter_id or "-",
                assessment_id or "-",
            )

        if patient_op in _ID_REQUIRED and not patient_id:
            raise MissingIdentifierError("Patient", patient_op)
        if encounter_op in _ID_REQUIRED and not encounter_id:
            raise MissingIdentifierError("Encounter", encounter_op)

        return replace(
            metadata,
            patient_id=patient_id or _new_id(),
            patient_key=metadata.patient_key.strip(),
            patient_operation=patient_op,
            encounter_id=encounter_id or _new_id(),
            encounter_key=metadata.encounter_key.strip(),
            encounter_operation=encounter_op,
            assessment_id=assessment_id or _new_id(),
            rec_id=metadata.rec_id.strip(),
            assessment_operation=assessment_op,
            assessment_type=metadata.assessment_type.strip(),
            fiscal=metadata.fiscal.strip(),
            quarter=metadata.quarter.strip(),
        )

    def update_cache(
        self,
        metadata: RecordMetadata,
        patient_id: str | None,
        encounter_id: str | None,
        assessment_id: str | None,
    ) -> None:
        """Remember ids returned for a successful submission."""
        stored = [
            self.cache.put(metadata.patient_key, patient_id),
            self.cache.put(metadata.encounter_key, encounter_id),
            self.cache.put(metadata.rec_id, assessment_id),
        ]
        logger.debug(
            "Cached %d id(s) for record %s", sum(stored), metadata.rec_id or "-"
        )
