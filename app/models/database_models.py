"""
SQLAlchemy ORM models for the BragDoc workstreams database.
Includes pgvector support for achievement and centroid embeddings.
"""
from sqlalchemy import (
    CheckConstraint,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Float,
    Boolean,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector
import enum
import uuid

from app.database import Base
from app.config import settings


def _uuid() -> str:
    return str(uuid.uuid4())


# Enums
class WorkstreamSource(str, enum.Enum):
    """Who placed an achievement in its workstream."""

    AI = "ai"
    USER = "user"


class EventDuration(str, enum.Enum):
    """Granularity of an achievement's event window."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    HALF_YEAR = "half year"
    YEAR = "year"


# Models
class User(Base):
    """User account (synced from the auth provider)."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)  # matches the auth provider id
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    projects = relationship("Project", back_populates="user", cascade="all, delete-orphan")
    achievements = relationship("Achievement", back_populates="user", cascade="all, delete-orphan")
    workstreams = relationship("Workstream", back_populates="user", cascade="all, delete-orphan")


class Project(Base):
    """Project an achievement belongs to; only its name is used here."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    user = relationship("User", back_populates="projects")
    achievements = relationship("Achievement", back_populates="project")


class Achievement(Base):
    """A recorded accomplishment with its embedding and workstream placement."""

    __tablename__ = "achievements"
    __table_args__ = (
        CheckConstraint("impact IS NULL OR (impact >= 1 AND impact <= 10)", name="ck_achievement_impact"),
        CheckConstraint(
            "workstream_source IS NULL OR workstream_source IN ('ai', 'user')",
            name="ck_achievement_workstream_source",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(256), nullable=False)
    summary = Column(Text, nullable=True)
    details = Column(Text, nullable=True)
    event_start = Column(DateTime(timezone=True), nullable=True, index=True)
    event_end = Column(DateTime(timezone=True), nullable=True)
    event_duration = Column(String(32), nullable=True)  # EventDuration value
    impact = Column(Integer, nullable=True, default=2)
    impact_source = Column(String(16), nullable=True, default="user")  # user | llm
    source = Column(String(16), nullable=True, default="manual")  # manual | commit | llm
    is_archived = Column(Boolean, nullable=False, default=False)

    # Embedding (vector, model, timestamp are always written together)
    embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    embedding_model = Column(String(128), nullable=True)
    embedding_generated_at = Column(DateTime(timezone=True), nullable=True)

    # Workstream placement
    workstream_id = Column(
        String(36), ForeignKey("workstreams.id", ondelete="SET NULL"), nullable=True, index=True
    )
    workstream_source = Column(String(16), nullable=True)  # WorkstreamSource value

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    user = relationship("User", back_populates="achievements")
    project = relationship("Project", back_populates="achievements")
    workstream = relationship("Workstream", back_populates="achievements")


class Workstream(Base):
    """A named thematic cluster of achievements with its centroid."""

    __tablename__ = "workstreams"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(7), nullable=True)  # #RRGGBB
    centroid_embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    centroid_updated_at = Column(DateTime(timezone=True), nullable=True)
    achievement_count = Column(Integer, nullable=False, default=0)  # cached
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    user = relationship("User", back_populates="workstreams")
    achievements = relationship("Achievement", back_populates="workstream")


class WorkstreamMetadata(Base):
    """Per-user record of the last full clustering run."""

    __tablename__ = "workstream_metadata"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    last_full_clustering_at = Column(DateTime(timezone=True), nullable=False)
    achievement_count_at_last_clustering = Column(Integer, nullable=False, default=0)
    epsilon = Column(Float, nullable=False)
    min_pts = Column(Integer, nullable=False)
    workstream_count = Column(Integer, nullable=False, default=0)
    outlier_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
