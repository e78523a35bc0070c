"""init

Revision ID: 5c1d2e7fa310
Revises:
Create Date: 2026-10-19 15:40:12.418211

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c1d2e7fa310"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "handle_claims",
        sa.Column("guid", sa.String(512), primary_key=True),
        sa.Column("identity", sa.String(512), nullable=False),
        sa.Column("handle", sa.String(150), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_handle_claims_identity", "handle_claims", ["identity"], unique=True
    )
    op.create_index("idx_handle_claims_handle", "handle_claims", ["handle"], unique=True)

    # Append-only: rows are inserted with the next version number and never updated.
    op.create_table(
        "profile_versions",
        sa.Column(
            "claim_guid",
            sa.String(512),
            sa.ForeignKey("handle_claims.guid"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("title", sa.String(150), nullable=False),
        sa.Column("description", sa.String(1500), nullable=False),
        sa.Column("avatar_ref", sa.String(128), nullable=True),
        sa.Column("social_links", sa.JSON, nullable=False),
        sa.Column("email", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_primary_key(
        "pk_profile_versions", "profile_versions", ["claim_guid", "version"]
    )

    op.create_table(
        "content_blobs",
        sa.Column("ref", sa.String(128), primary_key=True),
        sa.Column("size", sa.BigInteger, nullable=False),
        sa.Column("content", sa.LargeBinary, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("profile_versions")
    op.drop_table("handle_claims")
    op.drop_table("content_blobs")
