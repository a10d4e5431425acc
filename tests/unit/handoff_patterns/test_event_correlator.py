"""Tests for temporal correlation of pattern onset with medication/facility events."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from handoff_patterns.domain.models import (
    ConcernCategory,
    CorrelationStrength,
    EventType,
    FacilityHandoff,
    MedicationRecord,
)
from handoff_patterns.services.event_correlator import EventCorrelator

FIRST_MENTION = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class _FakeEvents:
    def __init__(
        self,
        medications: list[MedicationRecord] | None = None,
        facility_updates: list[FacilityHandoff] | None = None,
        fail_medications: bool = False,
    ) -> None:
        self.medications = medications or []
        self.facility_updates = facility_updates or []
        self.fail_medications = fail_medications
        self.windows: list[tuple[datetime, datetime]] = []

    async def list_medication_changes(self, patient_id, window_start, window_end):
        self.windows.append((window_start, window_end))
        if self.fail_medications:
            raise ConnectionError("database unavailable")
        return self.medications

    async def list_facility_updates(self, patient_id, window_start, window_end):
        return self.facility_updates


def _med(
    med_id: str,
    created_offset: float,
    updated_offset: float | None = None,
    title: str | None = "Lisinopril",
) -> MedicationRecord:
    return MedicationRecord(
        id=med_id,
        patient_id="p-1",
        title=title,
        created_at=FIRST_MENTION + timedelta(days=created_offset),
        updated_at=(
            FIRST_MENTION + timedelta(days=updated_offset) if updated_offset is not None else None
        ),
    )


def _facility(
    event_id: str, offset: float, title: str | None = "Moved to rehab"
) -> FacilityHandoff:
    return FacilityHandoff(
        id=event_id, title=title, created_at=FIRST_MENTION + timedelta(days=offset)
    )


async def _correlate(events: _FakeEvents):
    return await EventCorrelator(events).correlate("p-1", ConcernCategory.TIREDNESS, FIRST_MENTION)


@pytest.mark.asyncio
async def test_queries_seven_days_either_side() -> None:
    events = _FakeEvents()

    await _correlate(events)

    assert events.windows == [
        (FIRST_MENTION - timedelta(days=7), FIRST_MENTION + timedelta(days=7))
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "offset,expected",
    [
        (-3, CorrelationStrength.STRONG),
        (3, CorrelationStrength.STRONG),
        (-4, CorrelationStrength.POSSIBLE),
        (-7, CorrelationStrength.POSSIBLE),
    ],
)
async def test_strength_boundaries(offset: int, expected: CorrelationStrength) -> None:
    correlations = await _correlate(_FakeEvents(medications=[_med("m-1", offset)]))

    assert len(correlations) == 1
    assert correlations[0].strength is expected
    assert correlations[0].days_difference == abs(offset)


@pytest.mark.asyncio
async def test_events_beyond_window_are_dropped() -> None:
    events = _FakeEvents(
        medications=[_med("m-1", -8)],
        facility_updates=[_facility("f-1", 8)],
    )

    assert await _correlate(events) == []


@pytest.mark.asyncio
async def test_closer_update_is_described_as_change() -> None:
    correlations = await _correlate(_FakeEvents(medications=[_med("m-1", -10, -1)]))

    assert len(correlations) == 1
    event = correlations[0]
    assert event.event_type is EventType.MEDICATION
    assert event.event_description == "Lisinopril was changed"
    assert event.event_date == FIRST_MENTION - timedelta(days=1)
    assert event.days_difference == 1


@pytest.mark.asyncio
async def test_farther_update_keeps_creation() -> None:
    correlations = await _correlate(_FakeEvents(medications=[_med("m-1", -1, 5)]))

    assert correlations[0].event_description == "Lisinopril was added"
    assert correlations[0].days_difference == 1


@pytest.mark.asyncio
async def test_missing_titles_fall_back_to_generic_descriptions() -> None:
    events = _FakeEvents(
        medications=[_med("m-1", -2, title=None)],
        facility_updates=[_facility("f-1", 2, title="<>")],
    )

    descriptions = {c.event_description for c in await _correlate(events)}

    assert descriptions == {"A medication was added", "A facility change occurred"}


@pytest.mark.asyncio
async def test_strong_first_then_by_distance() -> None:
    events = _FakeEvents(
        medications=[_med("m-far", -2), _med("m-near", 1)],
        facility_updates=[_facility("f-possible", -5), _facility("f-strong", 3)],
    )

    correlations = await _correlate(events)

    assert [c.event_id for c in correlations] == ["m-near", "m-far", "f-strong", "f-possible"]


@pytest.mark.asyncio
async def test_failed_read_contributes_nothing() -> None:
    events = _FakeEvents(
        medications=[_med("m-1", -1)],
        facility_updates=[_facility("f-1", -2)],
        fail_medications=True,
    )

    correlations = await _correlate(events)

    assert [c.event_id for c in correlations] == ["f-1"]
    assert correlations[0].event_type is EventType.FACILITY_CHANGE


@pytest.mark.asyncio
async def test_serializes_with_camel_case_keys() -> None:
    correlations = await _correlate(_FakeEvents(facility_updates=[_facility("f-1", 0)]))

    dumped = correlations[0].model_dump(mode="json", by_alias=True)

    assert set(dumped) == {
        "eventType",
        "eventId",
        "eventDescription",
        "eventDate",
        "daysDifference",
        "strength",
    }
