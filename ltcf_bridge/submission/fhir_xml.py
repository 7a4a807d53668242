"""
Helpers for writing FHIR resources as XML.

FHIR XML puts every element in the http://hl7.org/fhir namespace and carries
primitive values in a ``value`` attribute.
"""

import re
from xml.etree import ElementTree as ET

FHIR_NS = "http://hl7.org/fhir"
NAMESPACES = {"f": FHIR_NS}

CIHI_IRRS_BASE = "http://cihi.ca/fhir/irrs"
STRUCTURE_DEFINITION_BASE = f"{CIHI_IRRS_BASE}/StructureDefinition"
CODE_SYSTEM_BASE = f"{CIHI_IRRS_BASE}/CodeSystem"

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

ET.register_namespace("", FHIR_NS)


def tag(name: str) -> str:
    """Qualified tag name in the FHIR namespace."""
    return f"{{{FHIR_NS}}}{name}"


def element(name: str, value: str | None = None, **attrs: str) -> ET.Element:
    """Create a detached FHIR element."""
    elem = ET.Element(tag(name), attrs)
    if value is not None:
        elem.set("value", value)
    return elem


def child(
    parent: ET.Element, name: str, value: str | None = None, **attrs: str
) -> ET.Element:
    """Append a FHIR element to a parent and return it."""
    elem = ET.SubElement(parent, tag(name), attrs)
    if value is not None:
        elem.set("value", value)
    return elem


def add_meta_profile(resource: ET.Element, profile: str) -> None:
    meta = child(resource, "meta")
    child(meta, "profile", f"{STRUCTURE_DEFINITION_BASE}/{profile}")


def add_coding(
    parent: ET.Element,
    code: str,
    system: str | None = None,
    display: str | None = None,
) -> ET.Element:
    """Append a ``coding`` element with optional system and display."""
    coding = child(parent, "coding")
    if system:
        child(coding, "system", system)
    child(coding, "code", code)
    if display:
        child(coding, "display", display)
    return coding


def add_codeable_concept(
    parent: ET.Element,
    name: str,
    code: str,
    system: str | None = None,
) -> ET.Element:
    concept = child(parent, name)
    add_coding(concept, code, system)
    return concept


def add_reference(parent: ET.Element, name: str, reference: str) -> ET.Element:
    ref = child(parent, name)
    child(ref, "reference", reference)
    return ref


def add_identifier_reference(
    parent: ET.Element, name: str, system: str, value: str
) -> ET.Element:
    """Append a reference that carries only a logical identifier."""
    ref = child(parent, name)
    identifier = child(ref, "identifier")
    child(identifier, "system", system)
    child(identifier, "value", value)
    return ref


def add_extension(parent: ET.Element, url: str) -> ET.Element:
    return child(parent, "extension", url=url)


def is_date(value: str) -> bool:
    return bool(DATE_PATTERN.match(value))


def to_xml(root: ET.Element) -> str:
    """Serialize an element tree as UTF-8 XML text with a declaration."""
    tree = ET.ElementTree(root)
    ET.indent(tree)
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


def local_name(elem: ET.Element) -> str:
    """Element tag without its namespace."""
    name = elem.tag if isinstance(elem.tag, str) else ""
    return name.rsplit("}", 1)[-1]


def value_of(elem: ET.Element | None) -> str | None:
    """The ``value`` attribute, or None when absent."""
    if elem is None:
        return None
    return elem.get("value")


def find_local(elem: ET.Element, name: str) -> ET.Element | None:
    """First direct child with the given local name, any namespace."""
    for candidate in elem:
        if local_name(candidate) == name:
            return candidate
    return None


def iter_local(elem: ET.Element, name: str):
    """All descendants (and self) with the given local name, any namespace."""
    for candidate in elem.iter():
        if local_name(candidate) == name:
            yield candidate
