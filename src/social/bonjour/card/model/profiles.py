"""Profile version data models.

Provides the SQLAlchemy model for the append-only log of profile payloads
bound to a handle claim.
"""
from typing import Any, Optional
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from social.bonjour.card.model.base import Base, str150, str1500


class ProfileVersion(Base):
    """One immutable version of the profile attached to a handle claim.

    Versions are numbered from 1 per claim. The composite primary key keeps
    two writers from ever committing the same version number.
    """

    __tablename__ = "profile_versions"

    claim_guid: Mapped[str] = mapped_column(
        String(512), ForeignKey("handle_claims.guid"), primary_key=True
    )
    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str150]
    description: Mapped[str1500]
    avatar_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    social_links: Mapped[Any] = mapped_column(JSON, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
