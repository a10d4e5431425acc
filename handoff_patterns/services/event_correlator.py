"""
Temporal correlation between a pattern's onset and external events.

Looks +/- 7 days around the first mention for:
- medication additions/changes
- facility transitions (facility-update notes)

Strength: STRONG (<= 3 days), POSSIBLE (4-7 days). Anything further is dropped
even if the underlying query returned it.
"""

from datetime import datetime, timedelta

import structlog

from handoff_patterns.domain.models import (
    ConcernCategory,
    CorrelatedEvent,
    CorrelationStrength,
    EventType,
    FacilityHandoff,
    MedicationRecord,
)
from handoff_patterns.errors import CorrelationReadError
from handoff_patterns.services.pattern_detector import days_between
from handoff_patterns.services.ports import EventSource
from handoff_patterns.services.text_safety import sanitize_title

logger = structlog.get_logger(__name__)

CORRELATION_WINDOW_DAYS = 7
STRONG_THRESHOLD_DAYS = 3


class EventCorrelator:
    """Finds medication and facility events near a pattern's first mention."""

    def __init__(
        self,
        events: EventSource,
        window_days: int = CORRELATION_WINDOW_DAYS,
        strong_threshold_days: int = STRONG_THRESHOLD_DAYS,
    ) -> None:
        self.events = events
        self.window_days = window_days
        self.strong_threshold_days = strong_threshold_days
        self.logger = logger.bind(component="event_correlator")

    async def correlate(
        self,
        patient_id: str,
        category: ConcernCategory,
        first_mention_date: datetime,
    ) -> list[CorrelatedEvent]:
        """
        Correlated events ordered STRONG first, then by ascending day distance.

        The first element is the most plausible explanatory event.
        """
        window = timedelta(days=self.window_days)
        window_start = first_mention_date - window
        window_end = first_mention_date + window

        correlations: list[CorrelatedEvent] = []

        try:
            medications = await self._read_medications(patient_id, window_start, window_end)
        except CorrelationReadError as e:
            self.logger.error(
                "medication_events_read_failed",
                category=category.value,
                error_type=type(e.__cause__).__name__,
            )
            medications = []

        for med in medications:
            event = self._medication_event(med, first_mention_date)
            if event is not None:
                correlations.append(event)

        try:
            facility_updates = await self._read_facility_updates(
                patient_id, window_start, window_end
            )
        except CorrelationReadError as e:
            self.logger.error(
                "facility_events_read_failed",
                category=category.value,
                error_type=type(e.__cause__).__name__,
            )
            facility_updates = []

        for handoff in facility_updates:
            event = self._facility_event(handoff, first_mention_date)
            if event is not None:
                correlations.append(event)

        correlations.sort(
            key=lambda c: (c.strength is not CorrelationStrength.STRONG, c.days_difference)
        )
        return correlations

    async def _read_medications(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[MedicationRecord]:
        try:
            return await self.events.list_medication_changes(patient_id, window_start, window_end)
        except Exception as e:
            raise CorrelationReadError("Medication events query failed") from e

    async def _read_facility_updates(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[FacilityHandoff]:
        try:
            return await self.events.list_facility_updates(patient_id, window_start, window_end)
        except Exception as e:
            raise CorrelationReadError("Facility events query failed") from e

    def _strength(self, days: int) -> CorrelationStrength:
        if days <= self.strong_threshold_days:
            return CorrelationStrength.STRONG
        return CorrelationStrength.POSSIBLE

    def _medication_event(
        self, med: MedicationRecord, first_mention_date: datetime
    ) -> CorrelatedEvent | None:
        created_diff = days_between(med.created_at, first_mention_date)
        updated_at = med.updated_at
        safe_title = sanitize_title(med.title)

        # An update only counts when it is a real change after creation and
        # sits closer to the onset than the creation itself
        if (
            updated_at is not None
            and updated_at > med.created_at
            and days_between(updated_at, first_mention_date) < created_diff
        ):
            anchor = updated_at
            days = days_between(updated_at, first_mention_date)
            description = f"{safe_title} was changed" if safe_title else "A medication was changed"
        else:
            anchor = med.created_at
            days = created_diff
            description = f"{safe_title} was added" if safe_title else "A medication was added"

        if days > self.window_days:
            return None

        return CorrelatedEvent(
            event_type=EventType.MEDICATION,
            event_id=med.id,
            event_description=description,
            event_date=anchor,
            days_difference=days,
            strength=self._strength(days),
        )

    def _facility_event(
        self, handoff: FacilityHandoff, first_mention_date: datetime
    ) -> CorrelatedEvent | None:
        days = days_between(handoff.created_at, first_mention_date)
        if days > self.window_days:
            return None

        return CorrelatedEvent(
            event_type=EventType.FACILITY_CHANGE,
            event_id=handoff.id,
            event_description=sanitize_title(handoff.title) or "A facility change occurred",
            event_date=handoff.created_at,
            days_difference=days,
            strength=self._strength(days),
        )
