from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleetcrm.core.database import Base


USER_ROLES = ("BDM", "MANAGEMENT")
PIPELINE_STAGES = ("LEAD", "QUALIFIED", "PROPOSAL", "NEGOTIATION", "CLOSED_WON", "CLOSED_LOST")
TERMINAL_STAGES = frozenset({"CLOSED_WON", "CLOSED_LOST"})
VISIT_TYPES = ("SALES_CALL", "FOLLOW_UP", "DEMO", "SUPPORT", "OTHER")

user_role_enum = Enum(*USER_ROLES, name="user_role")
pipeline_stage_enum = Enum(*PIPELINE_STAGES, name="pipeline_stage")
visit_type_enum = Enum(*VISIT_TYPES, name="visit_type")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def localnow() -> datetime:
    # Business timestamps are naive and expressed in the server's local clock.
    return datetime.now()


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(user_role_enum, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    industry: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    fleet_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    annual_revenue: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    assigned_bdm: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    creator: Mapped[User] = relationship("User", foreign_keys=[created_by])
    assigned_bdm_user: Mapped[User] = relationship("User", foreign_keys=[assigned_bdm])
    contacts: Mapped[list[Contact]] = relationship("Contact", back_populates="company", order_by="Contact.id")
    visits: Mapped[list[Visit]] = relationship("Visit", back_populates="company", order_by="Visit.id")
    sales_opportunities: Mapped[list[SalesOpportunity]] = relationship(
        "SalesOpportunity",
        back_populates="company",
        order_by="SalesOpportunity.id",
    )


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    company: Mapped[Company] = relationship("Company", back_populates="contacts")


class Visit(Base):
    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id"), nullable=False)
    contact_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("contacts.id"), nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    visit_type: Mapped[str] = mapped_column(visit_type_enum, nullable=False)
    visit_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    objectives: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcomes: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_steps: Mapped[str | None] = mapped_column(Text, nullable=True)
    follow_up_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    company: Mapped[Company] = relationship("Company", back_populates="visits")


class SalesOpportunity(Base):
    __tablename__ = "sales_opportunities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id"), nullable=False)
    contact_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("contacts.id"), nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    value: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=50, server_default="50")
    stage: Mapped[str] = mapped_column(pipeline_stage_enum, nullable=False)
    expected_close_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    actual_close_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    company: Mapped[Company] = relationship("Company", back_populates="sales_opportunities")


Index("ix_companies_assigned_bdm", Company.assigned_bdm)
Index("ix_companies_created_by", Company.created_by)
Index("ix_contacts_company_id", Contact.company_id)
Index("ix_visits_company_id", Visit.company_id)
Index("ix_visits_contact_id", Visit.contact_id)
Index("ix_visits_user_id_visit_date", Visit.user_id, Visit.visit_date)
Index("ix_visits_visit_date", Visit.visit_date)
Index("ix_sales_opportunities_company_id", SalesOpportunity.company_id)
Index("ix_sales_opportunities_contact_id", SalesOpportunity.contact_id)
Index("ix_sales_opportunities_user_id_stage", SalesOpportunity.user_id, SalesOpportunity.stage)
Index("ix_sales_opportunities_stage", SalesOpportunity.stage)
