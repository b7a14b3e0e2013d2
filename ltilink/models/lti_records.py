"""
SQLAlchemy models for persisted platforms, contexts, resource links and user results.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from ltilink.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LTIPlatformRecord(Base):
    """Model for a platform and its service credentials."""

    __tablename__ = "lti_platforms"

    id = Column(Integer, primary_key=True, index=True)
    consumer_key = Column(String(255), unique=True, index=True, nullable=True)
    secret = Column(String(1024), nullable=True)
    name = Column(String(255), nullable=True)
    family_code = Column(String(50), nullable=True)
    lti_version = Column(String(20), nullable=True)
    signature_method = Column(String(20), nullable=True)

    # LTI 1.3 registration
    platform_id = Column(String(255), nullable=True)
    client_id = Column(String(255), nullable=True)
    deployment_id = Column(String(255), nullable=True)
    access_token_url = Column(String(500), nullable=True)

    default_email = Column(String(255), nullable=True)
    settings = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    contexts = relationship("LTIContextRecord", back_populates="platform", cascade="all, delete-orphan")


class LTIContextRecord(Base):
    """Model for a course-like context within a platform."""

    __tablename__ = "lti_contexts"
    __table_args__ = (
        UniqueConstraint("platform_id", "lti_context_id", name="uq_lti_contexts_platform_context"),
    )

    id = Column(Integer, primary_key=True, index=True)
    platform_id = Column(Integer, ForeignKey("lti_platforms.id"), nullable=False)
    lti_context_id = Column(String(255), nullable=False)
    title = Column(String(255), nullable=True)
    settings = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    platform = relationship("LTIPlatformRecord", back_populates="contexts")


class LTIResourceLinkRecord(Base):
    """Model for a resource link with the settings received at launch."""

    __tablename__ = "lti_resource_links"

    id = Column(Integer, primary_key=True, index=True)
    platform_id = Column(Integer, ForeignKey("lti_platforms.id"), nullable=True, index=True)
    context_id = Column(Integer, ForeignKey("lti_contexts.id"), nullable=True, index=True)
    lti_resource_link_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    settings = Column(JSON, nullable=True)

    # Sharing
    primary_resource_link_id = Column(Integer, ForeignKey("lti_resource_links.id"), nullable=True)
    share_approved = Column(Boolean, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class LTIUserResultRecord(Base):
    """Model for a user's result sourcedId within a resource link."""

    __tablename__ = "lti_user_results"
    __table_args__ = (
        UniqueConstraint("resource_link_id", "lti_user_id", name="uq_lti_user_results_link_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    resource_link_id = Column(Integer, ForeignKey("lti_resource_links.id"), nullable=False, index=True)
    lti_user_id = Column(String(255), nullable=False)
    lti_result_sourced_id = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
