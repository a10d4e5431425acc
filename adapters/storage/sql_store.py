"""
SQLAlchemy-backed implementation of every pipeline port.

Sessions are synchronous; each port call runs in a worker thread via
`asyncio.to_thread` so the event loop never blocks on the database.
One session transaction covers one port call.
"""

import asyncio
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime

import structlog
from sqlalchemy import Engine, and_, create_engine, or_, select
from sqlalchemy.orm import Session, sessionmaker

from adapters.storage.tables import (
    Base,
    BinderItemRow,
    CircleMemberRow,
    DetectedPatternRow,
    FeatureEntitlementRow,
    HandoffRow,
    PatientRow,
    PatternMentionRow,
)
from handoff_patterns.config import DatabaseConfig
from handoff_patterns.domain.models import (
    CorrelatedEvent,
    DetectedPattern,
    FacilityHandoff,
    Handoff,
    MedicationRecord,
    Patient,
    PatternMention,
)

logger = structlog.get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _utc(value: datetime) -> datetime:
    return value.astimezone(UTC) if value.tzinfo is not None else value.replace(tzinfo=UTC)


def create_db_engine(config: DatabaseConfig) -> Engine:
    # Connection arguments for SQLite (not needed for Postgres)
    connect_args = {}
    if config.url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(config.url, echo=config.echo, connect_args=connect_args)


class SQLAlchemyStore:
    """Patient directory, entitlements, sources and pattern repository over one engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
        self.logger = logger.bind(component="sql_store")

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "SQLAlchemyStore":
        return cls(create_db_engine(config))

    def init_db(self) -> None:
        """Create all tables (idempotent)."""
        Base.metadata.create_all(bind=self.engine)
        self.logger.info("database_initialized")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Yield a session and handle commit/rollback."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # PatientDirectory

    async def get_patient(self, patient_id: str) -> Patient | None:
        return await asyncio.to_thread(self._get_patient, patient_id)

    def _get_patient(self, patient_id: str) -> Patient | None:
        with self.session() as session:
            row = session.get(PatientRow, patient_id)
            return Patient(id=row.id, circle_id=row.circle_id) if row else None

    async def list_patients(
        self,
        *,
        patient_id: str | None = None,
        circle_id: str | None = None,
        circle_ids: Sequence[str] | None = None,
    ) -> list[Patient]:
        return await asyncio.to_thread(self._list_patients, patient_id, circle_id, circle_ids)

    def _list_patients(
        self,
        patient_id: str | None,
        circle_id: str | None,
        circle_ids: Sequence[str] | None,
    ) -> list[Patient]:
        stmt = select(PatientRow).order_by(PatientRow.id)
        if patient_id is not None:
            stmt = stmt.where(PatientRow.id == patient_id)
        if circle_id is not None:
            stmt = stmt.where(PatientRow.circle_id == circle_id)
        if circle_ids is not None:
            stmt = stmt.where(PatientRow.circle_id.in_(list(circle_ids)))

        with self.session() as session:
            return [Patient(id=r.id, circle_id=r.circle_id) for r in session.scalars(stmt)]

    async def is_active_member(self, circle_id: str, user_id: str) -> bool:
        return await asyncio.to_thread(self._is_active_member, circle_id, user_id)

    def _is_active_member(self, circle_id: str, user_id: str) -> bool:
        stmt = select(CircleMemberRow.id).where(
            CircleMemberRow.circle_id == circle_id,
            CircleMemberRow.user_id == user_id,
            CircleMemberRow.status == "ACTIVE",
        )
        with self.session() as session:
            return session.scalars(stmt).first() is not None

    async def list_member_circle_ids(self, user_id: str) -> list[str]:
        return await asyncio.to_thread(self._list_member_circle_ids, user_id)

    def _list_member_circle_ids(self, user_id: str) -> list[str]:
        stmt = (
            select(CircleMemberRow.circle_id)
            .where(CircleMemberRow.user_id == user_id, CircleMemberRow.status == "ACTIVE")
            .distinct()
        )
        with self.session() as session:
            return sorted(session.scalars(stmt))

    async def get_circle_owners(self, circle_ids: Sequence[str]) -> dict[str, str]:
        return await asyncio.to_thread(self._get_circle_owners, list(circle_ids))

    def _get_circle_owners(self, circle_ids: list[str]) -> dict[str, str]:
        if not circle_ids:
            return {}
        stmt = select(CircleMemberRow.circle_id, CircleMemberRow.user_id).where(
            CircleMemberRow.circle_id.in_(circle_ids), CircleMemberRow.role == "OWNER"
        )
        with self.session() as session:
            return {circle_id: user_id for circle_id, user_id in session.execute(stmt)}

    # EntitlementChecker

    async def has_feature_access(self, user_id: str, feature: str) -> bool:
        return await asyncio.to_thread(self._has_feature_access, user_id, feature)

    def _has_feature_access(self, user_id: str, feature: str) -> bool:
        stmt = select(FeatureEntitlementRow.enabled).where(
            FeatureEntitlementRow.user_id == user_id, FeatureEntitlementRow.feature == feature
        )
        with self.session() as session:
            return bool(session.scalars(stmt).first())

    # HandoffSource

    async def list_published_handoffs(self, patient_id: str, since: datetime) -> list[Handoff]:
        return await asyncio.to_thread(self._list_published_handoffs, patient_id, _utc(since))

    def _list_published_handoffs(self, patient_id: str, since: datetime) -> list[Handoff]:
        stmt = (
            select(HandoffRow)
            .where(
                HandoffRow.patient_id == patient_id,
                HandoffRow.status == "PUBLISHED",
                HandoffRow.created_at >= since,
            )
            .order_by(HandoffRow.created_at.asc())
        )
        with self.session() as session:
            return [
                Handoff(
                    id=r.id,
                    patient_id=r.patient_id,
                    circle_id=r.circle_id,
                    type=r.type,
                    status=r.status,
                    title=r.title,
                    summary=r.summary,
                    body=r.body,
                    created_at=_aware(r.created_at),
                )
                for r in session.scalars(stmt)
            ]

    # EventSource

    async def list_medication_changes(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[MedicationRecord]:
        return await asyncio.to_thread(
            self._list_medication_changes, patient_id, _utc(window_start), _utc(window_end)
        )

    def _list_medication_changes(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[MedicationRecord]:
        stmt = select(BinderItemRow).where(
            BinderItemRow.patient_id == patient_id,
            BinderItemRow.type == "MED",
            or_(
                BinderItemRow.created_at.between(window_start, window_end),
                and_(
                    BinderItemRow.updated_at.is_not(None),
                    BinderItemRow.updated_at.between(window_start, window_end),
                ),
            ),
        )
        with self.session() as session:
            return [
                MedicationRecord(
                    id=r.id,
                    patient_id=r.patient_id,
                    title=r.title,
                    created_at=_aware(r.created_at),
                    updated_at=_aware(r.updated_at),
                )
                for r in session.scalars(stmt)
            ]

    async def list_facility_updates(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[FacilityHandoff]:
        return await asyncio.to_thread(
            self._list_facility_updates, patient_id, _utc(window_start), _utc(window_end)
        )

    def _list_facility_updates(
        self, patient_id: str, window_start: datetime, window_end: datetime
    ) -> list[FacilityHandoff]:
        stmt = select(HandoffRow).where(
            HandoffRow.patient_id == patient_id,
            HandoffRow.type == "FACILITY_UPDATE",
            HandoffRow.created_at.between(window_start, window_end),
        )
        with self.session() as session:
            return [
                FacilityHandoff(id=r.id, title=r.title, created_at=_aware(r.created_at))
                for r in session.scalars(stmt)
            ]

    # PatternRepository

    async def find_pattern_id(self, pattern_hash: str) -> str | None:
        return await asyncio.to_thread(self._find_pattern_id, pattern_hash)

    def _find_pattern_id(self, pattern_hash: str) -> str | None:
        stmt = select(DetectedPatternRow.id).where(DetectedPatternRow.pattern_hash == pattern_hash)
        with self.session() as session:
            return session.scalars(stmt).first()

    async def insert_pattern(self, pattern: DetectedPattern) -> str:
        return await asyncio.to_thread(self._insert_pattern, pattern)

    def _insert_pattern(self, pattern: DetectedPattern) -> str:
        row = DetectedPatternRow(
            circle_id=pattern.circle_id,
            patient_id=pattern.patient_id,
            concern_category=pattern.category.value,
            pattern_type=pattern.pattern_type.value,
            pattern_hash=pattern.pattern_hash,
            status=pattern.status.value,
        )
        self._apply(row, pattern)
        with self.session() as session:
            session.add(row)
            session.flush()
            return row.id

    async def update_pattern(self, pattern_id: str, pattern: DetectedPattern) -> None:
        await asyncio.to_thread(self._update_pattern, pattern_id, pattern)

    def _update_pattern(self, pattern_id: str, pattern: DetectedPattern) -> None:
        with self.session() as session:
            row = session.get(DetectedPatternRow, pattern_id)
            if row is None:
                raise LookupError("Pattern disappeared before update")
            self._apply(row, pattern)

    @staticmethod
    def _apply(row: DetectedPatternRow, pattern: DetectedPattern) -> None:
        """Copy the refreshable fields; identity and status are left alone on update."""
        row.concern_keywords = list(pattern.keywords)
        row.mention_count = pattern.mention_count
        row.first_mention_at = _utc(pattern.first_mention_at)
        row.last_mention_at = _utc(pattern.last_mention_at)
        row.trend = pattern.trend.value if pattern.trend else None
        row.correlated_events = (
            [e.model_dump(mode="json", by_alias=True) for e in pattern.correlated_events]
            if pattern.correlated_events
            else None
        )
        row.source_handoff_ids = list(pattern.source_handoff_ids)
        row.updated_at = _utc(pattern.updated_at)

    async def upsert_mentions(self, mentions: Sequence[PatternMention]) -> None:
        await asyncio.to_thread(self._upsert_mentions, list(mentions))

    def _upsert_mentions(self, mentions: list[PatternMention]) -> None:
        with self.session() as session:
            for mention in mentions:
                row = session.scalars(
                    select(PatternMentionRow).where(
                        PatternMentionRow.pattern_id == mention.pattern_id,
                        PatternMentionRow.handoff_id == mention.handoff_id,
                    )
                ).first()
                if row is None:
                    row = PatternMentionRow(
                        pattern_id=mention.pattern_id, handoff_id=mention.handoff_id
                    )
                    session.add(row)
                row.matched_text = mention.matched_text
                row.normalized_term = mention.normalized_term
                row.mentioned_at = _utc(mention.mentioned_at)
                # Keeps the (pattern_id, handoff_id) lookup above consistent within the batch
                session.flush()

    # Read-back

    async def list_patterns(self, patient_id: str | None = None) -> list[DetectedPattern]:
        return await asyncio.to_thread(self._list_patterns, patient_id)

    def _list_patterns(self, patient_id: str | None) -> list[DetectedPattern]:
        stmt = select(DetectedPatternRow).order_by(
            DetectedPatternRow.concern_category, DetectedPatternRow.pattern_type
        )
        if patient_id is not None:
            stmt = stmt.where(DetectedPatternRow.patient_id == patient_id)

        with self.session() as session:
            return [
                DetectedPattern(
                    id=r.id,
                    circle_id=r.circle_id,
                    patient_id=r.patient_id,
                    category=r.concern_category,
                    pattern_type=r.pattern_type,
                    pattern_hash=r.pattern_hash,
                    keywords=r.concern_keywords or [],
                    mention_count=r.mention_count,
                    first_mention_at=_aware(r.first_mention_at),
                    last_mention_at=_aware(r.last_mention_at),
                    trend=r.trend,
                    correlated_events=(
                        [CorrelatedEvent.model_validate(e) for e in r.correlated_events]
                        if r.correlated_events
                        else None
                    ),
                    source_handoff_ids=r.source_handoff_ids or [],
                    status=r.status,
                    created_at=_aware(r.created_at),
                    updated_at=_aware(r.updated_at),
                )
                for r in session.scalars(stmt)
            ]

    async def list_mentions(self, pattern_id: str) -> list[PatternMention]:
        return await asyncio.to_thread(self._list_mentions, pattern_id)

    def _list_mentions(self, pattern_id: str) -> list[PatternMention]:
        stmt = (
            select(PatternMentionRow)
            .where(PatternMentionRow.pattern_id == pattern_id)
            .order_by(PatternMentionRow.mentioned_at)
        )
        with self.session() as session:
            return [
                PatternMention(
                    pattern_id=r.pattern_id,
                    handoff_id=r.handoff_id,
                    matched_text=r.matched_text,
                    normalized_term=r.normalized_term,
                    mentioned_at=_aware(r.mentioned_at),
                )
                for r in session.scalars(stmt)
            ]
