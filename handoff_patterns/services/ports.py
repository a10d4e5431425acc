"""
Narrow collaborator interfaces injected into the pipeline.

Why Protocol over ABC: Structural typing, easier faking in tests, less coupling.
A single storage backend usually implements all of them; the orchestrator only
depends on the slice it needs.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from handoff_patterns.domain.models import (
    ConcernExtraction,
    DetectedPattern,
    FacilityHandoff,
    Handoff,
    MedicationRecord,
    Patient,
    PatternMention,
)


class ConcernExtractorPort(Protocol):
    async def extract(self, text: str) -> list[ConcernExtraction]:
        """Extract validated concerns from one note. Never raises."""
        ...


class PatientDirectory(Protocol):
    """Patients and circle membership (read-only)."""

    async def get_patient(self, patient_id: str) -> Patient | None: ...

    async def list_patients(
        self,
        *,
        patient_id: str | None = None,
        circle_id: str | None = None,
        circle_ids: Sequence[str] | None = None,
    ) -> list[Patient]: ...

    async def is_active_member(self, circle_id: str, user_id: str) -> bool: ...

    async def list_member_circle_ids(self, user_id: str) -> list[str]: ...

    async def get_circle_owners(self, circle_ids: Sequence[str]) -> dict[str, str]:
        """Map circle id to owning user id for the circles that have an owner."""
        ...


class EntitlementChecker(Protocol):
    async def has_feature_access(self, user_id: str, feature: str) -> bool: ...


class HandoffSource(Protocol):
    async def list_published_handoffs(self, patient_id: str, since: datetime) -> list[Handoff]:
        """Published notes created at or after `since`, oldest first."""
        ...


class EventSource(Protocol):
    """Medication and facility events consumed by the correlator (read-only)."""

    async def list_medication_changes(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[MedicationRecord]:
        """Medications created OR updated inside the window."""
        ...

    async def list_facility_updates(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[FacilityHandoff]: ...


class PatternRepository(Protocol):
    async def find_pattern_id(self, pattern_hash: str) -> str | None: ...

    async def insert_pattern(self, pattern: DetectedPattern) -> str:
        """Insert and return the new pattern id."""
        ...

    async def update_pattern(self, pattern_id: str, pattern: DetectedPattern) -> None: ...

    async def upsert_mentions(self, mentions: Sequence[PatternMention]) -> None:
        """Insert or refresh rows keyed by (pattern_id, handoff_id)."""
        ...
