"""FHIR resource builders for IRRS LTCF submissions."""

from ltcf_bridge.submission.resources.encounter import build_encounter
from ltcf_bridge.submission.resources.patient import build_patient
from ltcf_bridge.submission.resources.questionnaire import (
    build_questionnaire_response,
)

__all__ = [
    "build_encounter",
    "build_patient",
    "build_questionnaire_response",
]
