"""create contact table

Revision ID: 0001_create_contact
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_create_contact"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "contact",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=50), nullable=True),
        sa.Column("linked_id", sa.Integer(), nullable=True),
        sa.Column("link_precedence", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_contact"),
        sa.ForeignKeyConstraint(["linked_id"], ["contact.id"], name="fk_contact_linked_id_contact"),
        sa.UniqueConstraint("email", "phone_number", name="uq_contact_email_phone_number"),
        sa.CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_contact_email_or_phone_present",
        ),
        sa.CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contact_linked_id_matches_precedence",
        ),
    )
    op.create_index("ix_contact_email", "contact", ["email"])
    op.create_index("ix_contact_phone_number", "contact", ["phone_number"])
    op.create_index("ix_contact_linked_id", "contact", ["linked_id"])


def downgrade() -> None:
    op.drop_index("ix_contact_linked_id", table_name="contact")
    op.drop_index("ix_contact_phone_number", table_name="contact")
    op.drop_index("ix_contact_email", table_name="contact")
    op.drop_table("contact")
