# src/core/models.py — v1
"""Application record models: Record, Requirement, AttachmentFile.

Records are owned by the portal's record store; the preview pipeline only
reads them. Payloads arrive with camelCase keys (overallStatus, fileHash, ...)
and both spellings are accepted.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Timestamps come through as epoch millis or ISO strings depending on the writer.
Timestamp = int | float | str


class _RecordModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class AttachmentFile(_RecordModel):
    """One uploaded file under a requirement."""

    id: str
    file_name: str | None = None
    status: str | None = None
    uploaded_at: Timestamp | None = None
    file_hash: str | None = None
    file_size: int | None = None
    download_url: str | None = None
    content_type: str | None = None

    def is_approved(self, marker: str = "approve") -> bool:
        """True when the review status contains the approval marker."""
        return marker.lower() in (self.status or "").lower()


class Requirement(_RecordModel):
    """A named requirement holding an ordered list of files."""

    id: str
    name: str | None = None
    files: list[AttachmentFile] = Field(default_factory=list)


class Record(_RecordModel):
    """Business-permit application record."""

    id: str
    status: str | None = None
    overall_status: str | None = None
    application_date: Timestamp | None = None
    updated_at: Timestamp | None = None
    applicant_name: str | None = None
    business_name: str | None = None
    requirements: list[Requirement] = Field(default_factory=list)

    def approved_files(self, marker: str = "approve") -> list[AttachmentFile]:
        """Approved files in record order (requirement order, then file order)."""
        return [
            f
            for req in self.requirements
            for f in req.files
            if f.is_approved(marker)
        ]

    @property
    def display_title(self) -> str:
        """Preview title, e.g. 'Jane Doe - Corner Bakery Application Form'."""
        parts = [p for p in (self.applicant_name, self.business_name) if p]
        if parts:
            return f"{' - '.join(parts)} Application Form"
        return "Application Form Preview"
