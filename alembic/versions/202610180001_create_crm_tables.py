"""create crm tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


user_role = sa.Enum("BDM", "MANAGEMENT", name="user_role")
pipeline_stage = sa.Enum(
    "LEAD",
    "QUALIFIED",
    "PROPOSAL",
    "NEGOTIATION",
    "CLOSED_WON",
    "CLOSED_LOST",
    name="pipeline_stage",
)
visit_type = sa.Enum("SALES_CALL", "FOLLOW_UP", "DEMO", "SUPPORT", "OTHER", name="visit_type")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("role", user_role, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("industry", sa.Text(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("fleet_size", sa.Integer(), nullable=True),
        sa.Column("annual_revenue", sa.Numeric(15, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("assigned_bdm", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["assigned_bdm"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_companies_assigned_bdm", "companies", ["assigned_bdm"], unique=False)
    op.create_index("ix_companies_created_by", "companies", ["created_by"], unique=False)

    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("position", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_company_id", "contacts", ["company_id"], unique=False)

    op.create_table(
        "visits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("visit_type", visit_type, nullable=False),
        sa.Column("visit_date", sa.DateTime(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("objectives", sa.Text(), nullable=True),
        sa.Column("outcomes", sa.Text(), nullable=True),
        sa.Column("next_steps", sa.Text(), nullable=True),
        sa.Column("follow_up_date", sa.DateTime(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_visits_company_id", "visits", ["company_id"], unique=False)
    op.create_index("ix_visits_contact_id", "visits", ["contact_id"], unique=False)
    op.create_index("ix_visits_user_id_visit_date", "visits", ["user_id", "visit_date"], unique=False)
    op.create_index("ix_visits_visit_date", "visits", ["visit_date"], unique=False)

    op.create_table(
        "sales_opportunities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value", sa.Numeric(15, 2), nullable=True),
        sa.Column("probability", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("stage", pipeline_stage, nullable=False),
        sa.Column("expected_close_date", sa.DateTime(), nullable=True),
        sa.Column("actual_close_date", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sales_opportunities_company_id", "sales_opportunities", ["company_id"], unique=False)
    op.create_index("ix_sales_opportunities_contact_id", "sales_opportunities", ["contact_id"], unique=False)
    op.create_index(
        "ix_sales_opportunities_user_id_stage",
        "sales_opportunities",
        ["user_id", "stage"],
        unique=False,
    )
    op.create_index("ix_sales_opportunities_stage", "sales_opportunities", ["stage"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_sales_opportunities_stage", table_name="sales_opportunities")
    op.drop_index("ix_sales_opportunities_user_id_stage", table_name="sales_opportunities")
    op.drop_index("ix_sales_opportunities_contact_id", table_name="sales_opportunities")
    op.drop_index("ix_sales_opportunities_company_id", table_name="sales_opportunities")
    op.drop_table("sales_opportunities")
    op.drop_index("ix_visits_visit_date", table_name="visits")
    op.drop_index("ix_visits_user_id_visit_date", table_name="visits")
    op.drop_index("ix_visits_contact_id", table_name="visits")
    op.drop_index("ix_visits_company_id", table_name="visits")
    op.drop_table("visits")
    op.drop_index("ix_contacts_company_id", table_name="contacts")
    op.drop_table("contacts")
    op.drop_index("ix_companies_created_by", table_name="companies")
    op.drop_index("ix_companies_assigned_bdm", table_name="companies")
    op.drop_table("companies")
    op.drop_table("users")

    bind = op.get_bind()
    visit_type.drop(bind, checkfirst=True)
    pipeline_stage.drop(bind, checkfirst=True)
    user_role.drop(bind, checkfirst=True)
