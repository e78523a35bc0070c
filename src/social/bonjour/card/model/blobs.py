"""Content blob data models.

Provides the SQLAlchemy model used by the database content backend.
"""
from datetime import datetime
from sqlalchemy import BigInteger, DateTime, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from social.bonjour.card.model.base import Base


class ContentBlob(Base):
    """Write-once blob keyed by the digest of its bytes."""

    __tablename__ = "content_blobs"

    ref: Mapped[str] = mapped_column(String(128), primary_key=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
