"""Extract resource ids issued by IRRS from a transaction-response."""

import logging
from dataclasses import dataclass

from ltcf_bridge.outcome.evaluator import parse_response
from ltcf_bridge.submission.fhir_xml import iter_local, local_name, value_of

logger = logging.getLogger(__name__)


@dataclass
class ReturnedIds:
    """Permanent ids assigned by the server, when present."""

    patient_id: str | None = None
    encounter_id: str | None = None
    assessment_id: str | None = None


_LOCATION_FIELDS = {
    "Patient": "patient_id",
    "Encounter": "encounter_id",
    "QuestionnaireResponse": "assessment_id",
}


def _split_location(location: str) -> tuple[str, str] | None:
    """Parse ``Type/id`` out of a location, ignoring base url and history."""
    path = location.strip().split("/_history", 1)[0].rstrip("/")
    parts = path.split("/")
    if len(parts) < 2 or not parts[-1]:
        return None
    return parts[-2], parts[-1]


def extract_resource_ids(raw: str | None) -> ReturnedIds:
    """
    Read entry/response/location values of a transaction-response.

    The first location per resource type wins. Unparsable payloads yield
    an empty result.
    """
    ids = ReturnedIds()
    root = parse_response(raw)
    if root is None:
        return ids

    for response in iter_local(root, "response"):
        for node in response:
            if local_name(node) != "location":
                continue
            location = value_of(node)
            parsed = _split_location(location) if location else None
            if parsed is None:
                continue
            resource_type, resource_id = parsed
            attr = _LOCATION_FIELDS.get(resource_type)
            if attr and getattr(ids, attr) is None:
                setattr(ids, attr, resource_id)

    logger.debug(
        "Returned ids patient=%s encounter=%s assessment=%s",
        ids.patient_id,
        ids.encounter_id,
        ids.assessment_id,
    )
    return ids
