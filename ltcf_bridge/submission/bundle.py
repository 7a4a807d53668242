"""
Transaction bundle assembly.

Builds a single FHIR transaction Bundle for one LTCF record with up to three
entries, always in the order Encounter, QuestionnaireResponse, Patient.

Each entry's REST semantics come from its operation:

    CREATE      POST   /{Type}            full url urn:uuid:{id}
    CORRECTION  PUT    /{Type}            full url {Type}/{id}
    UPDATE      POST   /{Type}/$update    full url {Type}/{id}
    DELETE      DELETE /{Type}/{id}       full url {Type}/{id}
    USE         no request                full url {Type}/{id}
"""

import logging
import uuid
from dataclasses import dataclass, field
from xml.etree import ElementTree as ET

from ltcf_bridge.submission.fhir_xml import child, element, to_xml
from ltcf_bridge.submission.metadata import Operation, ParsedRecord, RecordMetadata
from ltcf_bridge.submission.resources import (
    build_encounter,
    build_patient,
    build_questionnaire_response,
)

logger = logging.getLogger(__name__)

PATIENT = "Patient"
ENCOUNTER = "Encounter"
QUESTIONNAIRE_RESPONSE = "QuestionnaireResponse"


@dataclass(frozen=True)
class RequestAction:
    """HTTP method and relative url for a transaction entry."""

    method: str
    url: str


@dataclass
class ResourceEntry:
    """One transaction entry: resource payload, full url and request."""

    resource_type: str
    resource_id: str
    full_url: str
    resource: ET.Element
    request: RequestAction | None = None

    def to_element(self) -> ET.Element:
        entry = element("entry")
        child(entry, "fullUrl", self.full_url)
        wrapper = child(entry, "resource")
        wrapper.append(self.resource)
        if self.request is not None:
            request = child(entry, "request")
            child(request, "method", self.request.method)
            child(request, "url", self.request.url)
        return entry


@dataclass
class Bundle:
    """Transaction bundle ready for serialization."""

    bundle_id: str
    entries: list[ResourceEntry] = field(default_factory=list)

    def entry_for(self, resource_type: str) -> ResourceEntry | None:
        for entry in self.entries:
            if entry.resource_type == resource_type:
                return entry
        return None

    def to_element(self) -> ET.Element:
        root = element("Bundle")
        child(root, "id", self.bundle_id)
        child(root, "type", "transaction")
        for entry in self.entries:
            root.append(entry.to_element())
        return root

    def to_xml(self) -> str:
        return to_xml(self.to_element())


def request_for(
    operation: str, resource_type: str, resource_id: str
) -> RequestAction | None:
    """
    Map an operation verb to the entry's request action.

    Raises:
        InvalidOperationError: If the verb is not a known operation.
    """
    op = Operation.parse(operation, resource_type)
    if op is Operation.CREATE:
        return RequestAction("POST", f"/{resource_type}")
    if op is Operation.CORRECTION:
        return RequestAction("PUT", f"/{resource_type}")
    if op is Operation.UPDATE:
        return RequestAction("POST", f"/{resource_type}/$update")
    if op is Operation.DELETE:
        return RequestAction("DELETE", f"/{resource_type}/{resource_id}")
    if op is Operation.USE:
        return None
    raise AssertionError(f"Unhandled operation: {op}")


def full_url_for(operation: str, resource_type: str, resource_id: str) -> str:
    """Transaction-temporary url for CREATE, permanent url otherwise."""
    if operation.strip().upper() == Operation.CREATE.value:
        return f"urn:uuid:{resource_id}"
    return f"{resource_type}/{resource_id}"


def _is_use(operation: str) -> bool:
    return operation.strip().upper() == Operation.USE.value


class BundleAssembler:
    """Composes the transaction bundle for one normalized record."""

    def build_bundle(
        self,
        record: ParsedRecord,
        metadata: RecordMetadata,
        bundle_id: str | None = None,
    ) -> Bundle:
        """
        Build the transaction bundle.

        Args:
            record: Parsed flat-file record
            metadata: Normalized metadata (ids and operations resolved)
            bundle_id: Reuse this bundle id instead of allocating one

        Returns:
            Bundle with entries in Encounter, QuestionnaireResponse,
            Patient order

        Raises:
            InvalidOperationError: If an included entry has an unknown verb.
        """
        bundle = Bundle(bundle_id=bundle_id or str(uuid.uuid4()))

        patient_reference = full_url_for(
            metadata.patient_operation, PATIENT, metadata.patient_id
        )
        encounter_reference = full_url_for(
            metadata.encounter_operation, ENCOUNTER, metadata.encounter_id
        )

        if record.encounter and not _is_use(metadata.encounter_operation):
            resource = build_encounter(
                record.encounter,
                metadata.encounter_id,
                patient_reference,
                is_return=metadata.is_return_assessment,
            )
            bundle.entries.append(
                self._entry(
                    ENCOUNTER,
                    metadata.encounter_id,
                    metadata.encounter_operation,
                    resource,
                )
            )

        if record.has_assessment_data:
            resource = build_questionnaire_response(
                record.assessment_sections,
                metadata.assessment_id,
                patient_reference,
                encounter_reference,
            )
            bundle.entries.append(
                self._entry(
                    QUESTIONNAIRE_RESPONSE,
                    metadata.assessment_id,
                    metadata.assessment_operation,
                    resource,
                )
            )

        if record.patient and not _is_use(metadata.patient_operation):
            resource = build_patient(record.patient, metadata.patient_id)
            bundle.entries.append(
                self._entry(
                    PATIENT,
                    metadata.patient_id,
                    metadata.patient_operation,
                    resource,
                )
            )

        logger.debug(
            "Assembled bundle %s with entries: %s",
            bundle.bundle_id,
            ", ".join(entry.resource_type for entry in bundle.entries) or "none",
        )
        return bundle

    @staticmethod
    def _entry(
        resource_type: str, resource_id: str, operation: str, resource: ET.Element
    ) -> ResourceEntry:
        return ResourceEntry(
            resource_type=resource_type,
            resource_id=resource_id,
            full_url=full_url_for(operation, resource_type, resource_id),
            resource=resource,
            request=request_for(operation, resource_type, resource_id),
        )
