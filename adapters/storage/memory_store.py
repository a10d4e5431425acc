"""In-memory implementation of the pipeline ports for tests and local runs."""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from handoff_patterns.domain.models import (
    DetectedPattern,
    FacilityHandoff,
    Handoff,
    MedicationRecord,
    Patient,
    PatternMention,
)


@dataclass
class Membership:
    circle_id: str
    user_id: str
    role: str = "CONTRIBUTOR"
    status: str = "ACTIVE"


@dataclass
class InMemoryStore:
    """Implements every port over plain collections; seed by appending to them."""

    patients: list[Patient] = field(default_factory=list)
    memberships: list[Membership] = field(default_factory=list)
    entitlements: set[tuple[str, str]] = field(default_factory=set)
    handoffs: list[Handoff] = field(default_factory=list)
    medications: list[MedicationRecord] = field(default_factory=list)
    patterns: dict[str, DetectedPattern] = field(default_factory=dict)
    mentions: dict[tuple[str, str], PatternMention] = field(default_factory=dict)

    # Seeding helpers

    def add_circle(self, circle_id: str, owner_id: str, *, features: Sequence[str] = ()) -> None:
        self.memberships.append(Membership(circle_id=circle_id, user_id=owner_id, role="OWNER"))
        for feature in features:
            self.entitlements.add((owner_id, feature))

    # PatientDirectory

    async def get_patient(self, patient_id: str) -> Patient | None:
        return next((p for p in self.patients if p.id == patient_id), None)

    async def list_patients(
        self,
        *,
        patient_id: str | None = None,
        circle_id: str | None = None,
        circle_ids: Sequence[str] | None = None,
    ) -> list[Patient]:
        return [
            p
            for p in self.patients
            if (patient_id is None or p.id == patient_id)
            and (circle_id is None or p.circle_id == circle_id)
            and (circle_ids is None or p.circle_id in circle_ids)
        ]

    async def is_active_member(self, circle_id: str, user_id: str) -> bool:
        return any(
            m.circle_id == circle_id and m.user_id == user_id and m.status == "ACTIVE"
            for m in self.memberships
        )

    async def list_member_circle_ids(self, user_id: str) -> list[str]:
        return sorted(
            {m.circle_id for m in self.memberships if m.user_id == user_id and m.status == "ACTIVE"}
        )

    async def get_circle_owners(self, circle_ids: Sequence[str]) -> dict[str, str]:
        return {
            m.circle_id: m.user_id
            for m in self.memberships
            if m.circle_id in circle_ids and m.role == "OWNER"
        }

    # EntitlementChecker

    async def has_feature_access(self, user_id: str, feature: str) -> bool:
        return (user_id, feature) in self.entitlements

    # HandoffSource

    async def list_published_handoffs(self, patient_id: str, since: datetime) -> list[Handoff]:
        matching = [
            h
            for h in self.handoffs
            if h.patient_id == patient_id and h.status == "PUBLISHED" and h.created_at >= since
        ]
        return sorted(matching, key=lambda h: h.created_at)

    # EventSource

    async def list_medication_changes(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[MedicationRecord]:
        def in_window(value: datetime | None) -> bool:
            return value is not None and window_start <= value <= window_end

        return [
            m
            for m in self.medications
            if m.patient_id == patient_id and (in_window(m.created_at) or in_window(m.updated_at))
        ]

    async def list_facility_updates(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[FacilityHandoff]:
        return [
            FacilityHandoff(id=h.id, title=h.title, created_at=h.created_at)
            for h in self.handoffs
            if h.patient_id == patient_id
            and h.type == "FACILITY_UPDATE"
            and window_start <= h.created_at <= window_end
        ]

    # PatternRepository

    async def find_pattern_id(self, pattern_hash: str) -> str | None:
        return next(
            (pid for pid, p in self.patterns.items() if p.pattern_hash == pattern_hash), None
        )

    async def insert_pattern(self, pattern: DetectedPattern) -> str:
        pattern_id = str(uuid.uuid4())
        self.patterns[pattern_id] = pattern.model_copy(
            update={"id": pattern_id, "created_at": pattern.updated_at}
        )
        return pattern_id

    async def update_pattern(self, pattern_id: str, pattern: DetectedPattern) -> None:
        existing = self.patterns[pattern_id]
        self.patterns[pattern_id] = existing.model_copy(
            update={
                "keywords": pattern.keywords,
                "mention_count": pattern.mention_count,
                "first_mention_at": pattern.first_mention_at,
                "last_mention_at": pattern.last_mention_at,
                "trend": pattern.trend,
                "correlated_events": pattern.correlated_events,
                "source_handoff_ids": pattern.source_handoff_ids,
                "updated_at": pattern.updated_at,
            }
        )

    async def upsert_mentions(self, mentions: Sequence[PatternMention]) -> None:
        for mention in mentions:
            self.mentions[(mention.pattern_id, mention.handoff_id)] = mention

    # Read-back

    async def list_patterns(self, patient_id: str | None = None) -> list[DetectedPattern]:
        return [
            p for p in self.patterns.values() if patient_id is None or p.patient_id == patient_id
        ]

    async def list_mentions(self, pattern_id: str) -> list[PatternMention]:
        return sorted(
            (m for (pid, _), m in self.mentions.items() if pid == pattern_id),
            key=lambda m: m.mentioned_at,
        )
