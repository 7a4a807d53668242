"""
QuestionnaireResponse carrying the interRAI LTCF assessment items.

Each assessment section becomes a top-level item whose linkId is the section
letter. Sub-items sharing an item stem (B3a, B3b, B3c) are grouped under a
stem item (B3) unless the stem itself carries an answer.
"""

import re
from typing import Mapping
from xml.etree import ElementTree as ET

from ltcf_bridge.submission.fhir_xml import add_reference, child, element, is_date

QUESTIONNAIRE_REFERENCE = "Questionnaire/irrs-ltcf"

STRING_FIELDS = frozenset({"A10", "A10a", "I2ab"})
DECIMAL_FIELDS = frozenset({"G2b", "K1a", "K1b"})
INTEGER_PATTERN = re.compile(r"^(O3[a-g][a-c]|O4[ab]|N[34])$")

SUB_ITEM_PATTERN = re.compile(r"^([A-Z]\d+)([a-z]{1,2})$")
SECTION_LETTER_PATTERN = re.compile(r"([A-Za-z])$")


def section_link_id(section_name: str) -> str:
    """Section letter for a section header such as 'A' or 'SECTION_B'."""
    name = section_name.strip()
    match = SECTION_LETTER_PATTERN.search(name)
    return match.group(1).upper() if match else name.upper()


def _add_answer(item: ET.Element, link_id: str, value: str) -> None:
    answer = child(item, "answer")
    if link_id in STRING_FIELDS:
        child(answer, "valueString", value)
    elif link_id in DECIMAL_FIELDS:
        child(answer, "valueDecimal", value)
    elif INTEGER_PATTERN.match(link_id):
        child(answer, "valueInteger", value)
    elif is_date(value):
        child(answer, "valueDate", value)
    else:
        coding = child(answer, "valueCoding")
        child(coding, "code", value)


def _add_section(
    parent: ET.Element, section_name: str, fields: Mapping[str, str]
) -> None:
    section = child(parent, "item")
    child(section, "linkId", section_link_id(section_name))

    answered = {key.strip() for key, value in fields.items() if (value or "").strip()}
    groups: dict[str, ET.Element] = {}

    for key, value in fields.items():
        link_id = key.strip()
        value = (value or "").strip()
        if not value:
            continue

        target = section
        match = SUB_ITEM_PATTERN.match(link_id)
        if match and match.group(1) not in answered:
            stem = match.group(1)
            if stem not in groups:
                groups[stem] = child(section, "item")
                child(groups[stem], "linkId", stem)
            target = groups[stem]

        item = child(target, "item")
        child(item, "linkId", link_id)
        _add_answer(item, link_id, value)


def build_questionnaire_response(
    sections: Mapping[str, Mapping[str, str]],
    response_id: str,
    subject_reference: str,
    encounter_reference: str,
) -> ET.Element:
    """Build a QuestionnaireResponse from the assessment sections."""
    response = element("QuestionnaireResponse")
    child(response, "id", response_id)
    add_reference(response, "questionnaire", QUESTIONNAIRE_REFERENCE)
    child(response, "status", "completed")
    add_reference(response, "subject", subject_reference)
    add_reference(response, "context", encounter_reference)

    for section_name, fields in sections.items():
        if fields:
            _add_section(response, section_name, fields)

    return response
