"""Handle claim data models.

Provides the SQLAlchemy model binding an external identity (a wallet address)
to the single handle it claimed.
"""

from datetime import datetime
from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from social.bonjour.card.model.base import Base, str512, guidpk

HANDLE_MAX_LENGTH = 150


class HandleClaim(Base):
    """Permanent binding of an identity to a normalized handle.

    Both columns are uniquely indexed: an identity holds at most one handle
    and a handle belongs to at most one identity. Rows are never updated or
    deleted.
    """

    __tablename__ = "handle_claims"

    guid: Mapped[guidpk]
    identity: Mapped[str512]
    handle: Mapped[str] = mapped_column(String(HANDLE_MAX_LENGTH))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("idx_handle_claims_identity", "identity", unique=True),
        Index("idx_handle_claims_handle", "handle", unique=True),
    )
