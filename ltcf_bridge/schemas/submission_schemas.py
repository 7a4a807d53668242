"""Schemas for submission endpoints."""

from pydantic import BaseModel, Field, field_validator

# Flat files are a few hundred lines; 2MB decoded is far beyond any record
MAX_FLAT_FILE_BYTES = 2 * 1024 * 1024
MAX_BASE64_SIZE = int(MAX_FLAT_FILE_BYTES * 4 / 3) + 100


class SubmissionRequest(BaseModel):
    """Request model for submitting one LTCF flat-file record."""

    data: str = Field(description="Base64-encoded flat-file content")
    dry_run: bool = Field(
        default=False,
        description="Build the bundle without submitting it or writing back",
    )

    @field_validator("data")
    @classmethod
    def validate_data_size(cls, v: str) -> str:
        """Validate that the data field doesn't exceed the maximum size."""
        if len(v) > MAX_BASE64_SIZE:
            max_mb = MAX_FLAT_FILE_BYTES / (1024 * 1024)
            raise ValueError(f"Flat file exceeds maximum size of {max_mb:.0f}MB")
        return v


class SectionNote(BaseModel):
    """A note written against an assessment section."""

    section: str
    note: str


class SubmissionResult(BaseModel):
    """Outcome of one submitted record."""

    status: str = Field(description="PASS, FAIL, INVALID, ERROR or BUILT")
    rec_id: str = ""
    bundle_id: str | None = None
    transaction_id: str | None = Field(
        default=None,
        description="IRRS transaction id from the response headers",
    )
    evaluation_method: str | None = Field(
        default=None,
        description="How the response was classified: structural, heuristic or empty",
    )
    patient_id: str | None = None
    encounter_id: str | None = None
    assessment_id: str | None = None
    notes: list[SectionNote] = Field(default_factory=list)
    write_back_failures: int = 0
    errors: list[str] = Field(default_factory=list)
    bundle_xml: str | None = Field(
        default=None,
        description="The assembled bundle, returned for dry runs",
    )


class IdentityCacheReset(BaseModel):
    """Result of clearing the run's identity cache."""

    cleared: int = Field(description="Number of cached ids removed")
