from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field


UserRole = Literal["BDM", "MANAGEMENT"]
PipelineStage = Literal["LEAD", "QUALIFIED", "PROPOSAL", "NEGOTIATION", "CLOSED_WON", "CLOSED_LOST"]
VisitType = Literal["SALES_CALL", "FOLLOW_UP", "DEMO", "SUPPORT", "OTHER"]

MAX_PAGE_SIZE = 200


def _to_server_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


# Aware inputs are shifted to the server clock and stored naive.
LocalDateTime = Annotated[datetime, AfterValidator(_to_server_local)]


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)
    role: UserRole


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    role: UserRole
    created_at: datetime
    updated_at: datetime


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1)
    industry: str | None = None
    address: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    website: str | None = None
    fleet_size: int | None = Field(default=None, ge=0)
    annual_revenue: Decimal | None = None
    notes: str | None = None
    assigned_bdm: int


class CompanyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    industry: str | None = None
    address: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    website: str | None = None
    fleet_size: int | None = Field(default=None, ge=0)
    annual_revenue: Decimal | None = None
    notes: str | None = None
    assigned_bdm: int | None = None


class CompanyListQuery(BaseModel):
    assigned_bdm: int | None = None
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Field(default=0, ge=0)


class CompanyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    industry: str | None
    address: str | None
    phone: str | None
    email: str | None
    website: str | None
    fleet_size: int | None
    annual_revenue: float | None
    notes: str | None
    created_by: int
    assigned_bdm: int
    created_at: datetime
    updated_at: datetime


class ContactCreate(BaseModel):
    company_id: int
    name: str = Field(min_length=1)
    position: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    is_primary: bool = False
    notes: str | None = None


class ContactUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    position: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    is_primary: bool | None = None
    notes: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    name: str
    position: str | None
    phone: str | None
    email: str | None
    is_primary: bool
    notes: str | None
    created_at: datetime
    updated_at: datetime


class VisitCreate(BaseModel):
    company_id: int
    contact_id: int | None = None
    visit_type: VisitType
    visit_date: LocalDateTime
    duration_minutes: int | None = Field(default=None, ge=0)
    summary: str = Field(min_length=1)
    objectives: str | None = None
    outcomes: str | None = None
    next_steps: str | None = None
    follow_up_date: LocalDateTime | None = None
    location: str | None = None


class VisitListQuery(BaseModel):
    company_id: int | None = None
    user_id: int | None = None
    from_date: LocalDateTime | None = None
    to_date: LocalDateTime | None = None
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Field(default=0, ge=0)


class VisitRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    contact_id: int | None
    user_id: int
    visit_type: VisitType
    visit_date: datetime
    duration_minutes: int | None
    summary: str
    objectives: str | None
    outcomes: str | None
    next_steps: str | None
    follow_up_date: datetime | None
    location: str | None
    created_at: datetime
    updated_at: datetime


class SalesOpportunityCreate(BaseModel):
    company_id: int
    contact_id: int | None = None
    title: str = Field(min_length=1)
    description: str | None = None
    value: Decimal | None = None
    probability: int = Field(default=50, ge=0, le=100)
    stage: PipelineStage
    expected_close_date: LocalDateTime | None = None


class SalesOpportunityUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    value: Decimal | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    stage: PipelineStage | None = None
    expected_close_date: LocalDateTime | None = None
    actual_close_date: LocalDateTime | None = None


class SalesOpportunityListQuery(BaseModel):
    company_id: int | None = None
    user_id: int | None = None
    stage: PipelineStage | None = None
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Field(default=0, ge=0)


class SalesOpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    contact_id: int | None
    user_id: int
    title: str
    description: str | None
    value: float | None
    probability: int
    stage: PipelineStage
    expected_close_date: datetime | None
    actual_close_date: datetime | None
    created_at: datetime
    updated_at: datetime


class CompanyWithRelations(CompanyRead):
    contacts: list[ContactRead] = Field(default_factory=list)
    visits: list[VisitRead] = Field(default_factory=list)
    sales_opportunities: list[SalesOpportunityRead] = Field(default_factory=list)


class StageRollup(BaseModel):
    stage: PipelineStage
    count: int
    total_value: float


class DashboardData(BaseModel):
    total_companies: int
    total_visits_this_month: int
    total_opportunities: int
    pipeline_value: float
    recent_visits: list[VisitRead] = Field(default_factory=list)
    opportunities_by_stage: list[StageRollup] = Field(default_factory=list)
