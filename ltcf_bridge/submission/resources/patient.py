"""Patient resource for the IRRS LTCF profile."""

from typing import Mapping
from xml.etree import ElementTree as ET

from ltcf_bridge.submission.fhir_xml import (
    STRUCTURE_DEFINITION_BASE,
    add_codeable_concept,
    add_coding,
    add_extension,
    add_identifier_reference,
    add_meta_profile,
    child,
    element,
)

IDENTIFIER_TYPE_SYSTEM = "http://hl7.org/fhir/v2/0203"
DEFAULT_HCN_ISSUER = "https://fhir.infoway-inforoute.ca/NamingSystem/ca-on-patient-hcn"
CASE_RECORD_SYSTEM = "http://acme.vendor.com/facility-cm"
SUBMISSION_IDENTIFIER_SYSTEM = (
    "http://cihi.ca/fhir/NamingSystem/cihi-submission-identifier"
)
BIRTH_SEX_EXTENSION = f"{STRUCTURE_DEFINITION_BASE}/irrs-ext-birth-sex"
DATA_ABSENT_EXTENSION = f"{STRUCTURE_DEFINITION_BASE}/irrs-ext-data-absent-reason"

# Health card number sentinels: 1 = unknown, 2 = not applicable
HCN_ABSENT_REASONS = {"1": "unknown", "2": "not-applicable"}

# Province codes that keep the Ontario issuer: 0 = unknown, 1 = not applicable
_DEFAULT_PROVINCES = frozenset({"", "0", "1", "ON"})


def hcn_issuer(province: str) -> str:
    """Naming system for the health card number issuing province."""
    province = province.strip()
    if province.upper() in _DEFAULT_PROVINCES:
        return DEFAULT_HCN_ISSUER
    return (
        "https://fhir.infoway-inforoute.ca/NamingSystem/"
        f"ca-{province.lower()}-patient-healthcare-id"
    )


def _health_card_identifier(patient: ET.Element, hcn: str, province: str) -> None:
    identifier = child(patient, "identifier")
    if not hcn or hcn in HCN_ABSENT_REASONS:
        extension = add_extension(identifier, DATA_ABSENT_EXTENSION)
        child(extension, "valueCode", HCN_ABSENT_REASONS.get(hcn, "unknown"))
        add_codeable_concept(identifier, "type", "JHN", IDENTIFIER_TYPE_SYSTEM)
        return
    add_codeable_concept(identifier, "type", "JHN", IDENTIFIER_TYPE_SYSTEM)
    child(identifier, "system", hcn_issuer(province))
    child(identifier, "value", hcn)


def build_patient(fields: Mapping[str, str], patient_id: str) -> ET.Element:
    """Build a Patient from PATIENT section fields."""

    def get(key: str) -> str:
        return (fields.get(key) or "").strip()

    patient = element("Patient")
    child(patient, "id", patient_id)
    add_meta_profile(patient, "irrs-patient")

    if sex_at_birth := get("A2A"):
        extension = add_extension(patient, BIRTH_SEX_EXTENSION)
        child(extension, "valueCode", sex_at_birth)

    _health_card_identifier(patient, get("A5A"), get("A5B"))

    if case_id := get("A5C"):
        identifier = child(patient, "identifier")
        add_codeable_concept(identifier, "type", "MR", IDENTIFIER_TYPE_SYSTEM)
        child(identifier, "system", CASE_RECORD_SYSTEM)
        child(identifier, "value", case_id)

    if birth_date := get("A3"):
        child(patient, "birthDate", birth_date)

    if postal_code := get("B6"):
        address = child(patient, "address")
        child(address, "use", "home")
        child(address, "postalCode", postal_code)

    if marital_status := get("A4"):
        concept = child(patient, "maritalStatus")
        add_coding(concept, marital_status)

    if language := get("B4"):
        communication = child(patient, "communication")
        concept = child(communication, "language")
        add_coding(concept, language)

    if org_id := get("OrgID"):
        add_identifier_reference(
            patient, "managingOrganization", SUBMISSION_IDENTIFIER_SYSTEM, org_id
        )

    return patient
