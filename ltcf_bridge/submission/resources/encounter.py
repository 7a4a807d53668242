"""
Encounter resource for the IRRS LTCF profile.

The encounter carries the stay period, the facility it was submitted for and,
as contained resources, the payment sources, the admission source and the
discharge destination. Contained resources are only emitted when the record
supplies the data they describe.
"""

from typing import Mapping
from xml.etree import ElementTree as ET

from ltcf_bridge.submission.fhir_xml import (
    STRUCTURE_DEFINITION_BASE,
    add_codeable_concept,
    add_coding,
    add_extension,
    add_identifier_reference,
    add_meta_profile,
    add_reference,
    child,
    element,
)

SERVICE_PROVIDER_SYSTEM = (
    "http://cihi.ca/fhir/NamingSystem/"
    "on-ministry-of-health-and-long-term-care-submission-identifier"
)
FACILITY_SYSTEM = "http://cihi.ca/fhir/NamingSystem/cihi-submission-identifier"
INCLUDES_EXTENSION = f"{STRUCTURE_DEFINITION_BASE}/irrs-ext-includes"

# Payment source fields, one contained Coverage each
COVERAGE_FIELDS = (
    "A7a", "A7b", "A7c", "A7d", "A7e", "A7f",
    "A7g", "A7h", "A7i", "A7j", "A7k",
)
# A7a is the provincial/territorial plan; the rest are non-public payers
COVERAGE_TYPES = {"A7a": "INPUBLICPOL"}
DEFAULT_COVERAGE_TYPE = "pay"

START_FIELD = "B2"
RETURN_START_FIELD = "B2R"
END_FIELD = "R1"
ADMITTED_FROM_FIELD = "B5A"
ADMITTED_FROM_FACILITY_FIELD = "B5B"
READMISSION_FIELD = "B5D"
DISCHARGED_TO_FIELD = "R2"
DISCHARGED_TO_FACILITY_FIELD = "R4"
ORG_FIELD = "OrgID"

# R2 code for a resident who died in the facility
EXPIRED_DISCHARGE_CODE = "1"

ENCOUNTER_STATUS = "planned"

# Checkbox value meaning "not a payment source"
_NOT_SELECTED = "0"


def coverage_fields_present(fields: Mapping[str, str]) -> list[str]:
    """Payment source fields that are selected on the record."""
    present = []
    for name in COVERAGE_FIELDS:
        value = (fields.get(name) or "").strip()
        if value and value != _NOT_SELECTED:
            present.append(name)
    return present


def _contained(
    encounter: ET.Element, resource_type: str, resource_id: str, profile: str
) -> ET.Element:
    wrapper = child(encounter, "contained")
    resource = child(wrapper, resource_type)
    child(resource, "id", resource_id)
    add_meta_profile(resource, profile)
    return resource


def _add_coverages(encounter: ET.Element, coverages: list[str], start: str) -> None:
    account = _contained(encounter, "Account", "paymentSource", "irrs-account")
    add_codeable_concept(account, "type", "PBILLACCT")
    for name in coverages:
        entry = child(account, "coverage")
        add_reference(entry, "coverage", f"#coverage-i{name}")

    for name in coverages:
        coverage = _contained(
            encounter, "Coverage", f"coverage-i{name}", "irrs-coverage"
        )
        add_codeable_concept(
            coverage, "type", COVERAGE_TYPES.get(name, DEFAULT_COVERAGE_TYPE)
        )
        if start:
            period = child(coverage, "period")
            child(period, "start", start)


def _add_location(
    encounter: ET.Element,
    location_id: str,
    profile: str,
    code: str,
    facility: str,
) -> None:
    location = _contained(encounter, "Location", location_id, profile)
    add_codeable_concept(location, "type", code)
    if facility:
        add_identifier_reference(
            location, "managingOrganization", FACILITY_SYSTEM, facility
        )


def build_encounter(
    fields: Mapping[str, str],
    encounter_id: str,
    subject_reference: str,
    is_return: bool = False,
) -> ET.Element:
    """
    Build an Encounter from ENCOUNTER section fields.

    Args:
        fields: ENCOUNTER section key/value pairs
        encounter_id: Resolved encounter id
        subject_reference: Patient reference (temporary or permanent)
        is_return: Use the return date as the period start

    Returns:
        The Encounter element
    """

    def get(key: str) -> str:
        return (fields.get(key) or "").strip()

    start = get(RETURN_START_FIELD) if is_return else get(START_FIELD)
    end = get(END_FIELD)
    admitted_from = get(ADMITTED_FROM_FIELD)
    discharged_to = get(DISCHARGED_TO_FIELD)
    readmission = get(READMISSION_FIELD)
    has_discharge_location = bool(discharged_to) and (
        discharged_to != EXPIRED_DISCHARGE_CODE
    )

    encounter = element("Encounter")
    child(encounter, "id", encounter_id)
    add_meta_profile(encounter, "irrs-encounter")

    coverages = coverage_fields_present(fields)
    if coverages:
        _add_coverages(encounter, coverages, start)
    if admitted_from:
        _add_location(
            encounter,
            "admittedFrom",
            "irrs-location-admission",
            admitted_from,
            get(ADMITTED_FROM_FACILITY_FIELD),
        )
    if has_discharge_location:
        _add_location(
            encounter,
            "dischargedTo",
            "irrs-location-discharge",
            discharged_to,
            get(DISCHARGED_TO_FACILITY_FIELD),
        )

    if coverages:
        extension = add_extension(encounter, INCLUDES_EXTENSION)
        add_reference(extension, "valueReference", "#paymentSource")

    child(encounter, "status", ENCOUNTER_STATUS)
    add_reference(encounter, "subject", subject_reference)

    if start or end:
        period = child(encounter, "period")
        if start:
            child(period, "start", start)
        if end:
            child(period, "end", end)

    if admitted_from or discharged_to or readmission:
        hospitalization = child(encounter, "hospitalization")
        if admitted_from:
            add_reference(hospitalization, "origin", "#admittedFrom")
        if readmission:
            concept = child(hospitalization, "reAdmission")
            add_coding(concept, readmission)
        if has_discharge_location:
            add_reference(hospitalization, "destination", "#dischargedTo")
        if discharged_to:
            concept = child(hospitalization, "dischargeDisposition")
            add_coding(concept, discharged_to)

    if org_id := get(ORG_FIELD):
        add_identifier_reference(
            encounter, "serviceProvider", SERVICE_PROVIDER_SYSTEM, org_id
        )

    return encounter
