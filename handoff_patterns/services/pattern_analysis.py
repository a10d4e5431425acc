"""
Orchestration of the symptom pattern pipeline.

One run:
1. Validate the request and authorize the caller before any patient data is read
2. Resolve eligible patients (subscription entitlement checked once per circle)
3. Per patient: extract concerns note by note, group by category
4. Detect patterns per category, correlate onset for NEW/CORRELATION patterns
5. Upsert by content-independent hash so reruns refresh instead of duplicating

Failures are isolated at the narrowest boundary that still makes sense: a note,
a pattern write, a mention batch, a patient. Only the request-level checks
abort the run.
"""

import asyncio
import hashlib
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Literal, TypeVar

import structlog
from pydantic import ValidationError

from handoff_patterns.config import CorrelationConfig, DetectionConfig
from handoff_patterns.domain.models import (
    SYMPTOM_PATTERNS_FEATURE,
    AnalyzeRequest,
    AnalyzeResponse,
    Caller,
    ConcernCategory,
    DetectedPattern,
    Handoff,
    Mention,
    Patient,
    PatientError,
    PatternMention,
    PatternResult,
    PatternType,
)
from handoff_patterns.errors import (
    AuthenticationError,
    AuthorizationError,
    PatientAnalysisError,
    PatternAnalysisError,
    PersistenceError,
    RequestValidationError,
)
from handoff_patterns.services.event_correlator import EventCorrelator
from handoff_patterns.services.pattern_detector import (
    detect_absence_pattern,
    detect_patterns,
    split_by_recency,
)
from handoff_patterns.services.ports import (
    ConcernExtractorPort,
    EntitlementChecker,
    EventSource,
    HandoffSource,
    PatientDirectory,
    PatternRepository,
)

logger = structlog.get_logger(__name__)

MENTION_BATCH_SIZE = 100
MAX_MATCHED_TEXT_LENGTH = 500

# Pattern types whose onset is worth explaining with nearby events
CORRELATED_PATTERN_TYPES = frozenset({PatternType.NEW, PatternType.CORRELATION})

T = TypeVar("T")


def pattern_hash(
    circle_id: str, patient_id: str, category: ConcernCategory, pattern_type: PatternType
) -> str:
    """Deterministic identity key; circle is included to prevent cross-circle collisions."""
    data = f"{circle_id}:{patient_id}:{category.value}:{pattern_type.value}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _unique(values: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(values))


@dataclass
class PatientOutcome:
    created: int = 0
    updated: int = 0


class PatternAnalysisService:
    """
    Stateless orchestrator over injected collaborators.

    Holds no per-run state, so the same instance can serve concurrent runs;
    all safety under re-invocation comes from upsert idempotency.
    """

    def __init__(
        self,
        *,
        extractor: ConcernExtractorPort,
        patients: PatientDirectory,
        entitlements: EntitlementChecker,
        handoffs: HandoffSource,
        events: EventSource,
        repository: PatternRepository,
        detection: DetectionConfig | None = None,
        correlation: CorrelationConfig | None = None,
        mention_batch_size: int = MENTION_BATCH_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.extractor = extractor
        self.patients = patients
        self.entitlements = entitlements
        self.handoffs = handoffs
        self.repository = repository
        self.detection = detection or DetectionConfig()
        correlation = correlation or CorrelationConfig()
        self.correlator = EventCorrelator(
            events,
            window_days=correlation.window_days,
            strong_threshold_days=correlation.strong_threshold_days,
        )
        self.mention_batch_size = mention_batch_size
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger.bind(component="pattern_analysis")

    # Request level

    @staticmethod
    def parse_request(payload: AnalyzeRequest | Mapping[str, Any] | None) -> AnalyzeRequest:
        if isinstance(payload, AnalyzeRequest):
            return payload
        try:
            return AnalyzeRequest.model_validate(payload or {})
        except ValidationError as e:
            errors = e.errors()
            loc = errors[0]["loc"] if errors else ()
            field = str(loc[0]) if loc else ""
            messages = {
                "patientId": "Invalid patient ID format",
                "patient_id": "Invalid patient ID format",
                "circleId": "Invalid circle ID format",
                "circle_id": "Invalid circle ID format",
                "rangeStartDays": "Invalid range start days",
                "range_start_days": "Invalid range start days",
            }
            raise RequestValidationError(messages.get(field, "Invalid request body")) from e

    async def run(
        self,
        payload: AnalyzeRequest | Mapping[str, Any] | None,
        caller: Caller,
    ) -> AnalyzeResponse:
        """Execute one analysis run and aggregate per-patient results."""
        request = self.parse_request(payload)
        run_start = self._clock()
        response = AnalyzeResponse()

        member_scope = await self._authorize(request, caller)
        if member_scope is not None and not member_scope:
            return response

        eligible = await self.resolve_eligible_patients(request, member_scope)
        self.logger.info(
            "pattern_analysis_started",
            trigger=caller.kind,
            eligible_patients=len(eligible),
            range_days=request.range_start_days,
        )

        for index, patient in enumerate(eligible):
            try:
                outcome = await self.analyze_patient(patient, request.range_start_days)
            except Exception as e:
                # Identifiers stay out of logs and the response; the index is enough
                self.logger.error(
                    "patient_analysis_failed", patient_index=index, error_type=type(e).__name__
                )
                message = (
                    e.message if isinstance(e, PatternAnalysisError) else "Patient analysis failed"
                )
                response.errors.append(PatientError(patient_index=index, error=message))
                continue

            response.patients_analyzed += 1
            response.patterns_created += outcome.created
            response.patterns_updated += outcome.updated

        self.logger.info(
            "pattern_analysis_completed",
            patients_analyzed=response.patients_analyzed,
            patterns_created=response.patterns_created,
            patterns_updated=response.patterns_updated,
            errors=len(response.errors),
            duration_seconds=round((self._clock() - run_start).total_seconds(), 3),
        )
        return response

    async def _authorize(self, request: AnalyzeRequest, caller: Caller) -> list[str] | None:
        """
        Check an end user's access before any patient data is touched.

        Returns the circles an unscoped user may analyze, or None when the run
        is not narrowed by membership (scheduled trigger or explicit scope).
        """
        if caller.kind == "scheduled":
            return None
        if not caller.user_id:
            raise AuthenticationError()

        if request.patient_id is None and request.circle_id is None:
            return await self.patients.list_member_circle_ids(caller.user_id)

        target_circle_id = request.circle_id
        if target_circle_id is None and request.patient_id is not None:
            patient = await self.patients.get_patient(request.patient_id)
            if patient is None:
                # Nothing to analyze; an empty scope short-circuits the run
                return []
            target_circle_id = patient.circle_id

        if not await self.patients.is_active_member(target_circle_id, caller.user_id):
            raise AuthorizationError()
        return None

    async def resolve_eligible_patients(
        self, request: AnalyzeRequest, circle_scope: Sequence[str] | None = None
    ) -> list[Patient]:
        """Candidate patients whose circle owner is entitled to symptom patterns."""
        candidates = await self.patients.list_patients(
            patient_id=request.patient_id,
            circle_id=request.circle_id,
            circle_ids=circle_scope,
        )
        if not candidates:
            return []

        circle_ids = sorted({p.circle_id for p in candidates})
        owners = await self.patients.get_circle_owners(circle_ids)
        if not owners:
            self.logger.warning("no_circle_owners_found", circles=len(circle_ids))
            return []

        entitled = await self._entitled_circles(owners)
        eligible = [p for p in candidates if p.circle_id in entitled]

        if not eligible:
            self.logger.info("no_eligible_patients", candidates=len(candidates))
        return eligible

    async def _entitled_circles(self, owners: Mapping[str, str]) -> set[str]:
        """One concurrent entitlement check per distinct circle owner."""

        async def check(circle_id: str, owner_id: str) -> tuple[str, bool]:
            try:
                allowed = await self.entitlements.has_feature_access(
                    owner_id, SYMPTOM_PATTERNS_FEATURE
                )
            except Exception as e:
                self.logger.warning("entitlement_check_failed", error_type=type(e).__name__)
                allowed = False
            return circle_id, bool(allowed)

        async with asyncio.TaskGroup() as task_group:
            tasks = [
                task_group.create_task(check(circle_id, owner_id))
                for circle_id, owner_id in owners.items()
            ]

        return {circle_id for circle_id, allowed in (t.result() for t in tasks) if allowed}

    # Patient level

    async def analyze_patient(self, patient: Patient, range_start_days: int) -> PatientOutcome:
        now = self._clock()
        since = now - timedelta(days=range_start_days)

        try:
            handoffs = await self.handoffs.list_published_handoffs(patient.id, since)
        except Exception as e:
            raise PatientAnalysisError("Failed to fetch handoffs") from e

        outcome = PatientOutcome()
        if not handoffs:
            return outcome

        mentions_by_category = await self.collect_mentions(handoffs)

        for category, mentions in mentions_by_category.items():
            for result in self.detect(category, mentions, now=now, window_days=range_start_days):
                status = await self._process_pattern(patient, category, result, mentions, now)
                if status == "created":
                    outcome.created += 1
                elif status == "updated":
                    outcome.updated += 1

        return outcome

    async def collect_mentions(
        self, handoffs: Sequence[Handoff]
    ) -> dict[ConcernCategory, list[Mention]]:
        """
        Extract concerns note by note and group them by category.

        Notes arrive oldest first, so each category's list stays chronological.
        One note's failure contributes nothing and does not affect its siblings.
        """
        by_category: dict[ConcernCategory, list[Mention]] = {}

        for handoff in handoffs:
            text = handoff.text
            if not text.strip():
                continue

            try:
                concerns = await self.extractor.extract(text)
            except Exception as e:
                self.logger.error("handoff_extraction_failed", error_type=type(e).__name__)
                continue

            for concern in concerns:
                by_category.setdefault(concern.category, []).append(
                    Mention(
                        handoff_id=handoff.id,
                        created_at=handoff.created_at,
                        category=concern.category,
                        normalized_term=concern.normalized_term,
                        raw_text=concern.raw_text,
                    )
                )

        return by_category

    def detect(
        self,
        category: ConcernCategory,
        mentions: Sequence[Mention],
        *,
        now: datetime,
        window_days: int,
    ) -> list[PatternResult]:
        config = self.detection
        results = detect_patterns(
            category,
            mentions,
            now=now,
            window_days=window_days,
            frequency_threshold=config.frequency_threshold,
            new_pattern_days=config.new_pattern_days,
            trend_change_threshold=config.trend_change_threshold,
        )

        if config.detect_absence:
            historical, recent = split_by_recency(
                mentions, now=now, recent_days=config.absence_threshold_days
            )
            absence = detect_absence_pattern(
                category,
                historical,
                recent,
                now=now,
                min_previous=config.absence_min_previous,
                threshold_days=config.absence_threshold_days,
            )
            if absence is not None:
                results.append(absence)

        return results

    async def _process_pattern(
        self,
        patient: Patient,
        category: ConcernCategory,
        result: PatternResult,
        mentions: Sequence[Mention],
        now: datetime,
    ) -> Literal["created", "updated"] | None:
        contributing = [
            m
            for m in mentions
            if result.first_mention_date <= m.created_at <= result.last_mention_date
        ]

        correlated_events = None
        if result.type in CORRELATED_PATTERN_TYPES:
            correlated_events = await self.correlator.correlate(
                patient.id, category, result.first_mention_date
            )

        pattern = DetectedPattern(
            circle_id=patient.circle_id,
            patient_id=patient.id,
            category=category,
            pattern_type=result.type,
            pattern_hash=pattern_hash(patient.circle_id, patient.id, category, result.type),
            keywords=_unique([m.normalized_term for m in contributing]),
            mention_count=result.mention_count,
            first_mention_at=result.first_mention_date,
            last_mention_at=result.last_mention_date,
            trend=result.trend,
            correlated_events=correlated_events or None,
            source_handoff_ids=_unique([m.handoff_id for m in contributing]),
            updated_at=now,
        )

        try:
            pattern_id, status = await self._write_pattern(pattern)
        except PersistenceError as e:
            self.logger.error(
                "pattern_write_failed",
                category=category.value,
                pattern_type=result.type.value,
                error_type=type(e.__cause__).__name__,
            )
            return None

        await self._upsert_mentions(pattern_id, contributing)
        return status

    async def _write_pattern(
        self, pattern: DetectedPattern
    ) -> tuple[str, Literal["created", "updated"]]:
        """Update the pattern with the same hash, or insert a new one."""
        try:
            existing_id = await self.repository.find_pattern_id(pattern.pattern_hash)
            if existing_id is not None:
                await self.repository.update_pattern(existing_id, pattern)
                return existing_id, "updated"
            return await self.repository.insert_pattern(pattern), "created"
        except Exception as e:
            raise PersistenceError("Failed to persist pattern") from e

    async def _upsert_mentions(self, pattern_id: str, mentions: Sequence[Mention]) -> None:
        rows = [
            PatternMention(
                pattern_id=pattern_id,
                handoff_id=m.handoff_id,
                matched_text=m.raw_text[:MAX_MATCHED_TEXT_LENGTH],
                normalized_term=m.normalized_term,
                mentioned_at=m.created_at,
            )
            for m in mentions
        ]

        for batch in chunked(rows, self.mention_batch_size):
            try:
                await self.repository.upsert_mentions(batch)
            except Exception as e:
                self.logger.error(
                    "mention_batch_write_failed",
                    batch_size=len(batch),
                    error_type=type(e).__name__,
                )
