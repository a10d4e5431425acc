"""
Domain models for symptom pattern surfacing.

These models represent the core concepts of the pipeline and are framework-agnostic.
They use Pydantic for validation; storage and transport layers map to and from them.
"""

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)

SYMPTOM_PATTERNS_FEATURE = "symptom_patterns"


class ConcernCategory(str, Enum):
    """Fixed, non-clinical concern taxonomy."""

    TIREDNESS = "TIREDNESS"
    APPETITE = "APPETITE"
    SLEEP = "SLEEP"
    PAIN = "PAIN"
    MOOD = "MOOD"
    MOBILITY = "MOBILITY"
    COGNITION = "COGNITION"
    DIGESTION = "DIGESTION"
    BREATHING = "BREATHING"
    SKIN = "SKIN"


class PatternType(str, Enum):
    """Kinds of temporal signal surfaced to the care team."""

    FREQUENCY = "FREQUENCY"  # 3+ mentions in the window
    TREND = "TREND"  # week-over-week change beyond threshold
    CORRELATION = "CORRELATION"  # near a medication/facility change
    NEW = "NEW"  # first mention in the last 7 days
    ABSENCE = "ABSENCE"  # previously frequent, now silent


class TrendDirection(str, Enum):
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


class EventType(str, Enum):
    MEDICATION = "MEDICATION"
    FACILITY_CHANGE = "FACILITY_CHANGE"


class CorrelationStrength(str, Enum):
    STRONG = "STRONG"
    POSSIBLE = "POSSIBLE"


class PatternStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DISMISSED = "DISMISSED"
    TRACKING = "TRACKING"


# Reference vocabulary per category, used to steer the extraction prompt
CATEGORY_KEYWORDS: dict[ConcernCategory, list[str]] = {
    ConcernCategory.TIREDNESS: [
        "tired",
        "exhausted",
        "no energy",
        "fatigued",
        "sluggish",
        "lethargic",
        "worn out",
        "drained",
        "weary",
    ],
    ConcernCategory.APPETITE: [
        "not eating",
        "no appetite",
        "eating well",
        "hungry",
        "eating less",
        "not hungry",
        "appetite",
        "food",
    ],
    ConcernCategory.SLEEP: [
        "insomnia",
        "sleeping",
        "restless",
        "can't sleep",
        "waking up",
        "nightmares",
        "sleep",
        "nap",
        "drowsy",
    ],
    ConcernCategory.PAIN: [
        "pain",
        "hurting",
        "aches",
        "discomfort",
        "sore",
        "tender",
        "sharp",
        "dull",
        "throbbing",
    ],
    ConcernCategory.MOOD: [
        "sad",
        "anxious",
        "irritable",
        "happy",
        "depressed",
        "worried",
        "upset",
        "angry",
        "mood",
        "crying",
    ],
    ConcernCategory.MOBILITY: [
        "walking",
        "balance",
        "fell",
        "unsteady",
        "stumbling",
        "mobility",
        "standing",
        "moving",
        "weak legs",
    ],
    ConcernCategory.COGNITION: [
        "confused",
        "forgetful",
        "alert",
        "sharp",
        "disoriented",
        "memory",
        "thinking",
        "unclear",
    ],
    ConcernCategory.DIGESTION: [
        "nausea",
        "constipation",
        "upset stomach",
        "diarrhea",
        "vomiting",
        "bloated",
        "stomach",
        "bowel",
    ],
    ConcernCategory.BREATHING: [
        "short of breath",
        "coughing",
        "wheezing",
        "breathing",
        "chest",
        "breathless",
        "SOB",
    ],
    ConcernCategory.SKIN: [
        "rash",
        "bruise",
        "swelling",
        "wound",
        "redness",
        "itchy",
        "skin",
        "sore",
        "cut",
    ],
}

# Any normalized term containing one of these is rejected outright
BANNED_CLINICAL_TERMS: tuple[str, ...] = (
    "diagnosis",
    "diagnose",
    "disease",
    "infection",
    "syndrome",
    "disorder",
    "condition",
    "acute",
    "chronic",
    "severe",
    "critical",
    "emergency",
    "prognosis",
    "treatment",
    "prescription",
    "prescribe",
    "pathology",
    "pathological",
    "clinical",
    "medical assessment",
    "risk factor",
    "complication",
    "adverse effect",
)


class ConcernExtraction(BaseModel):
    """One validated concern pulled from a single note."""

    model_config = ConfigDict(frozen=True)

    category: ConcernCategory
    raw_text: str = Field(min_length=1, max_length=200)
    normalized_term: str = Field(min_length=1, max_length=200)


class Mention(BaseModel):
    """A concern tagged with its source note; the unit fed to detection."""

    model_config = ConfigDict(frozen=True)

    handoff_id: str
    created_at: datetime
    category: ConcernCategory
    normalized_term: str
    raw_text: str


class PatternResult(BaseModel):
    """Detector output for one category and pattern type."""

    type: PatternType
    mention_count: int = Field(ge=0)
    first_mention_date: datetime
    last_mention_date: datetime
    trend: TrendDirection | None = None


class CorrelatedEvent(BaseModel):
    """External event temporally near a pattern's onset."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: EventType
    event_id: str
    event_description: str
    event_date: datetime
    days_difference: int = Field(ge=0)
    strength: CorrelationStrength


class DetectedPattern(BaseModel):
    """Persisted pattern, identified by its content-independent hash."""

    id: str | None = None
    circle_id: str
    patient_id: str
    category: ConcernCategory
    pattern_type: PatternType
    pattern_hash: str
    keywords: list[str] = Field(default_factory=list)
    mention_count: int = Field(ge=0)
    first_mention_at: datetime
    last_mention_at: datetime
    trend: TrendDirection | None = None
    correlated_events: list[CorrelatedEvent] | None = None
    source_handoff_ids: list[str] = Field(default_factory=list)
    status: PatternStatus = PatternStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class PatternMention(BaseModel):
    """Join row linking a pattern to a contributing note."""

    pattern_id: str
    handoff_id: str
    matched_text: str = Field(max_length=500)
    normalized_term: str
    mentioned_at: datetime


# Read-side records from the surrounding system


class Patient(BaseModel):
    id: str
    circle_id: str


class Handoff(BaseModel):
    """Caregiver note as stored by the surrounding system."""

    id: str
    patient_id: str
    circle_id: str
    type: str = "VISIT"
    status: str = "PUBLISHED"
    title: str | None = None
    summary: str | None = None
    body: str | None = None
    created_at: datetime

    @property
    def text(self) -> str:
        return " ".join(part for part in (self.title, self.summary, self.body) if part)


class MedicationRecord(BaseModel):
    id: str
    patient_id: str
    title: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class FacilityHandoff(BaseModel):
    id: str
    title: str | None = None
    created_at: datetime


# Trigger request/response


class Caller(BaseModel):
    """Who triggered a run: the scheduler or an authenticated end user."""

    kind: Literal["scheduled", "user"]
    user_id: str | None = None

    @classmethod
    def scheduled(cls) -> "Caller":
        return cls(kind="scheduled")

    @classmethod
    def user(cls, user_id: str) -> "Caller":
        return cls(kind="user", user_id=user_id)


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    patient_id: str | None = None
    circle_id: str | None = None
    range_start_days: int = Field(default=30, ge=1, le=365)

    @field_validator("patient_id", "circle_id")
    @classmethod
    def validate_uuid(cls, v: str | None) -> str | None:
        if v is not None and not UUID_PATTERN.fullmatch(v):
            raise ValueError("must be a UUID")
        return v


class PatientError(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    patient_index: int
    error: str


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    patients_analyzed: int = 0
    patterns_created: int = 0
    patterns_updated: int = 0
    errors: list[PatientError] = Field(default_factory=list)
