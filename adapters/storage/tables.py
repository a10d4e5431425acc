"""
SQLAlchemy ORM tables for symptom pattern persistence.

Only `detected_patterns` and `pattern_mentions` are written by the pipeline;
the other tables mirror the slice of the care-circle schema it reads.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class PatientRow(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=_uuid)
    circle_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class CircleMemberRow(Base):
    __tablename__ = "circle_members"

    id = Column(String(36), primary_key=True, default=_uuid)
    circle_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="CONTRIBUTOR")  # OWNER | ADMIN | CONTRIBUTOR
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | INVITED | REMOVED


class FeatureEntitlementRow(Base):
    __tablename__ = "feature_entitlements"
    __table_args__ = (UniqueConstraint("user_id", "feature"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    feature = Column(String(64), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)


class HandoffRow(Base):
    __tablename__ = "handoffs"

    id = Column(String(36), primary_key=True, default=_uuid)
    circle_id = Column(String(36), nullable=False)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False, default="VISIT")  # VISIT | FACILITY_UPDATE | ...
    status = Column(String(20), nullable=False, default="PUBLISHED")  # DRAFT | PUBLISHED
    title = Column(String(200), nullable=True)
    summary = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class BinderItemRow(Base):
    __tablename__ = "binder_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    circle_id = Column(String(36), nullable=False)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # MED | CONTACT | FACILITY | ...
    title = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class DetectedPatternRow(Base):
    __tablename__ = "detected_patterns"

    id = Column(String(36), primary_key=True, default=_uuid)
    circle_id = Column(String(36), nullable=False, index=True)
    patient_id = Column(String(36), nullable=False, index=True)
    concern_category = Column(String(20), nullable=False)
    concern_keywords = Column(JSON, nullable=False, default=list)
    pattern_type = Column(String(20), nullable=False)
    pattern_hash = Column(String(64), nullable=False, unique=True)
    mention_count = Column(Integer, nullable=False, default=0)
    first_mention_at = Column(DateTime(timezone=True), nullable=False)
    last_mention_at = Column(DateTime(timezone=True), nullable=False)
    trend = Column(String(20), nullable=True)
    correlated_events = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")
    source_handoff_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PatternMentionRow(Base):
    __tablename__ = "pattern_mentions"
    __table_args__ = (UniqueConstraint("pattern_id", "handoff_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    pattern_id = Column(String(36), ForeignKey("detected_patterns.id"), nullable=False, index=True)
    handoff_id = Column(String(36), nullable=False, index=True)
    matched_text = Column(String(500), nullable=False)
    normalized_term = Column(String(200), nullable=False)
    mentioned_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
