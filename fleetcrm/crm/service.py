from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from fleetcrm.core.config import get_settings
from fleetcrm.core.context import ActorUser
from fleetcrm.crm.errors import ConstraintError, NotFoundError, ValidationError
from fleetcrm.crm.models import (
    PIPELINE_STAGES,
    TERMINAL_STAGES,
    Company,
    Contact,
    SalesOpportunity,
    User,
    Visit,
    localnow,
    utcnow,
)
from fleetcrm.crm.repositories import CompanyRepository, SalesOpportunityRepository, VisitRepository
from fleetcrm.crm.schemas import (
    CompanyCreate,
    CompanyListQuery,
    CompanyRead,
    CompanyUpdate,
    CompanyWithRelations,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    DashboardData,
    SalesOpportunityCreate,
    SalesOpportunityListQuery,
    SalesOpportunityRead,
    SalesOpportunityUpdate,
    StageRollup,
    UserCreate,
    UserRead,
    VisitCreate,
    VisitListQuery,
    VisitRead,
)
from fleetcrm.metrics import observe_dashboard, observe_opportunity_closed, observe_primary_contact_demotions
from fleetcrm.otel import get_tracer

__all__ = [
    "ActorUser",
    "CompanyService",
    "ContactService",
    "DashboardService",
    "SalesOpportunityService",
    "UserService",
    "VisitService",
    "current_month_window",
]


logger = logging.getLogger("fleetcrm.crm")
tracer = get_tracer("fleetcrm.crm")


def _commit(session: Session) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConstraintError(str(exc.orig)) from exc


def _require_not_null(payload: dict[str, Any], fields: tuple[str, ...]) -> None:
    for field in fields:
        if field in payload and payload[field] is None:
            raise ValidationError(f"{field} cannot be null")


def _require_text(payload: dict[str, Any], field: str) -> None:
    if field in payload:
        if not str(payload[field]).strip():
            raise ValidationError(f"{field} cannot be empty")
        payload[field] = str(payload[field]).strip()


def _as_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _get_company(session: Session, company_id: int, message: str | None = None) -> Company:
    company = session.get(Company, company_id)
    if company is None:
        raise NotFoundError(message or f"Company with id {company_id} not found")
    return company


def _validate_company_and_contact(session: Session, company_id: int, contact_id: int | None) -> None:
    _get_company(session, company_id, "Company not found")
    if contact_id is None:
        return
    contact = session.scalar(
        select(Contact).where(and_(Contact.id == contact_id, Contact.company_id == company_id))
    )
    if contact is None:
        raise NotFoundError("Contact not found or does not belong to the specified company")


def current_month_window(now: datetime | None = None) -> tuple[datetime, datetime]:
    """First and last instant of the calendar month containing ``now`` (server-local)."""
    current = now or localnow()
    start = current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        next_start = start.replace(year=start.year + 1, month=1)
    else:
        next_start = start.replace(month=start.month + 1)
    return start, next_start - timedelta(microseconds=1)


class UserService:
    def create_user(self, session: Session, dto: UserCreate) -> UserRead:
        user = User(email=str(dto.email), name=dto.name.strip(), role=dto.role)
        session.add(user)
        _commit(session)
        session.refresh(user)
        return UserRead.model_validate(user)

    def list_users(self, session: Session) -> list[UserRead]:
        users = session.scalars(select(User).order_by(User.created_at.asc(), User.id.asc())).all()
        return [UserRead.model_validate(user) for user in users]


class CompanyService:
    def create_company(self, session: Session, actor_user: ActorUser, dto: CompanyCreate) -> CompanyRead:
        payload = dto.model_dump()
        _require_text(payload, "name")
        if payload["email"] is not None:
            payload["email"] = str(payload["email"])

        company = Company(**payload, created_by=actor_user.user_id)
        session.add(company)
        _commit(session)
        session.refresh(company)
        return CompanyRead.model_validate(company)

    def list_companies(self, session: Session, query: CompanyListQuery) -> list[CompanyRead]:
        stmt: Select[tuple[Company]] = select(Company)
        if query.assigned_bdm is not None:
            stmt = stmt.where(Company.assigned_bdm == query.assigned_bdm)
        stmt = stmt.order_by(Company.created_at.desc(), Company.id.desc()).offset(query.offset).limit(query.limit)
        return [CompanyRead.model_validate(company) for company in session.scalars(stmt).all()]

    def get_company(self, session: Session, company_id: int) -> CompanyWithRelations:
        company = session.scalar(
            select(Company)
            .where(Company.id == company_id)
            .options(
                selectinload(Company.contacts),
                selectinload(Company.visits),
                selectinload(Company.sales_opportunities),
            )
        )
        if company is None:
            raise NotFoundError(f"Company with id {company_id} not found")
        return CompanyWithRelations.model_validate(company)

    def update_company(self, session: Session, company_id: int, dto: CompanyUpdate) -> CompanyRead:
        company = _get_company(session, company_id)

        payload = dto.model_dump(exclude_unset=True)
        _require_not_null(payload, ("name", "assigned_bdm"))
        _require_text(payload, "name")
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])
        if not payload:
            return CompanyRead.model_validate(company)

        payload["updated_at"] = utcnow()
        session.execute(update(Company).where(Company.id == company.id).values(**payload))
        _commit(session)
        session.refresh(company)
        return CompanyRead.model_validate(company)


class ContactService:
    """Contact writes keep at most one primary contact per company.

    Marking a contact primary first demotes the company's current primary
    contact(s) and then writes the target row; both statements share one
    transaction, so readers never observe two primaries and a failed write
    leaves the previous primary in place.
    """

    def create_contact(self, session: Session, dto: ContactCreate) -> ContactRead:
        company = _get_company(session, dto.company_id)

        payload = dto.model_dump()
        _require_text(payload, "name")
        if payload["email"] is not None:
            payload["email"] = str(payload["email"])

        with tracer.start_as_current_span("crm.contact.create") as span:
            span.set_attribute("company_id", company.id)
            span.set_attribute("is_primary", dto.is_primary)
            demoted = 0
            try:
                if dto.is_primary:
                    demoted = self._demote_primary_contacts(session, company.id)
                contact = Contact(**payload)
                session.add(contact)
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConstraintError(str(exc.orig)) from exc
            _commit(session)

        self._record_demotions(company.id, contact.id, demoted)
        session.refresh(contact)
        return ContactRead.model_validate(contact)

    def list_contacts(self, session: Session, company_id: int | None = None) -> list[ContactRead]:
        stmt: Select[tuple[Contact]] = select(Contact)
        if company_id is not None:
            stmt = stmt.where(Contact.company_id == company_id)
        contacts = session.scalars(stmt.order_by(Contact.id.asc())).all()
        return [ContactRead.model_validate(contact) for contact in contacts]

    def update_contact(self, session: Session, contact_id: int, dto: ContactUpdate) -> ContactRead:
        contact = session.get(Contact, contact_id)
        if contact is None:
            raise NotFoundError(f"Contact with id {contact_id} not found")

        payload = dto.model_dump(exclude_unset=True)
        _require_not_null(payload, ("name", "is_primary"))
        _require_text(payload, "name")
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])
        if not payload:
            return ContactRead.model_validate(contact)

        payload["updated_at"] = utcnow()
        with tracer.start_as_current_span("crm.contact.update") as span:
            span.set_attribute("company_id", contact.company_id)
            span.set_attribute("contact_id", contact.id)
            demoted = 0
            try:
                if payload.get("is_primary") is True:
                    demoted = self._demote_primary_contacts(session, contact.company_id, exclude_contact_id=contact.id)
                session.execute(update(Contact).where(Contact.id == contact.id).values(**payload))
            except IntegrityError as exc:
                session.rollback()
                raise ConstraintError(str(exc.orig)) from exc
            _commit(session)

        self._record_demotions(contact.company_id, contact.id, demoted)
        session.refresh(contact)
        return ContactRead.model_validate(contact)

    def _demote_primary_contacts(
        self,
        session: Session,
        company_id: int,
        *,
        exclude_contact_id: int | None = None,
    ) -> int:
        criteria = [Contact.company_id == company_id, Contact.is_primary.is_(True)]
        if exclude_contact_id is not None:
            criteria.append(Contact.id != exclude_contact_id)
        result = session.execute(
            update(Contact).where(and_(*criteria)).values(is_primary=False, updated_at=utcnow())
        )
        return int(result.rowcount or 0)

    def _record_demotions(self, company_id: int, contact_id: int, demoted: int) -> None:
        if demoted <= 0:
            return
        observe_primary_contact_demotions(demoted)
        logger.info(
            "contact.primary_demoted",
            extra={"company_id": company_id, "contact_id": contact_id, "demoted_count": demoted},
        )


class VisitService:
    def create_visit(self, session: Session, actor_user: ActorUser, dto: VisitCreate) -> VisitRead:
        _validate_company_and_contact(session, dto.company_id, dto.contact_id)

        payload = dto.model_dump()
        _require_text(payload, "summary")
        visit = Visit(**payload, user_id=actor_user.user_id)
        session.add(visit)
        _commit(session)
        session.refresh(visit)
        return VisitRead.model_validate(visit)

    def list_visits(self, session: Session, query: VisitListQuery) -> list[VisitRead]:
        stmt: Select[tuple[Visit]] = select(Visit)
        if query.company_id is not None:
            stmt = stmt.where(Visit.company_id == query.company_id)
        if query.user_id is not None:
            stmt = stmt.where(Visit.user_id == query.user_id)
        if query.from_date is not None:
            stmt = stmt.where(Visit.visit_date >= query.from_date)
        if query.to_date is not None:
            stmt = stmt.where(Visit.visit_date <= query.to_date)
        stmt = stmt.order_by(Visit.visit_date.desc(), Visit.id.desc()).offset(query.offset).limit(query.limit)
        return [VisitRead.model_validate(visit) for visit in session.scalars(stmt).all()]


class SalesOpportunityService:
    def create_opportunity(
        self,
        session: Session,
        actor_user: ActorUser,
        dto: SalesOpportunityCreate,
    ) -> SalesOpportunityRead:
        _validate_company_and_contact(session, dto.company_id, dto.contact_id)

        payload = dto.model_dump()
        _require_text(payload, "title")
        opportunity = SalesOpportunity(**payload, user_id=actor_user.user_id, actual_close_date=None)
        session.add(opportunity)
        _commit(session)
        session.refresh(opportunity)
        return SalesOpportunityRead.model_validate(opportunity)

    def list_opportunities(self, session: Session, query: SalesOpportunityListQuery) -> list[SalesOpportunityRead]:
        stmt: Select[tuple[SalesOpportunity]] = select(SalesOpportunity)
        if query.company_id is not None:
            stmt = stmt.where(SalesOpportunity.company_id == query.company_id)
        if query.user_id is not None:
            stmt = stmt.where(SalesOpportunity.user_id == query.user_id)
        if query.stage is not None:
            stmt = stmt.where(SalesOpportunity.stage == query.stage)
        stmt = (
            stmt.order_by(SalesOpportunity.created_at.desc(), SalesOpportunity.id.desc())
            .offset(query.offset)
            .limit(query.limit)
        )
        return [SalesOpportunityRead.model_validate(row) for row in session.scalars(stmt).all()]

    def update_opportunity(
        self,
        session: Session,
        opportunity_id: int,
        dto: SalesOpportunityUpdate,
    ) -> SalesOpportunityRead:
        opportunity = session.get(SalesOpportunity, opportunity_id)
        if opportunity is None:
            raise NotFoundError(f"Sales opportunity with id {opportunity_id} not found")

        payload = dto.model_dump(exclude_unset=True)
        _require_not_null(payload, ("title", "probability", "stage"))
        _require_text(payload, "title")
        if not payload:
            return SalesOpportunityRead.model_validate(opportunity)

        # An explicit actual_close_date (including null) always wins over the auto-stamp.
        new_stage = payload.get("stage")
        closing = new_stage in TERMINAL_STAGES
        if closing and "actual_close_date" not in payload:
            payload["actual_close_date"] = localnow()

        payload["updated_at"] = utcnow()
        session.execute(update(SalesOpportunity).where(SalesOpportunity.id == opportunity.id).values(**payload))
        _commit(session)

        if closing:
            observe_opportunity_closed(new_stage)
            logger.info(
                "opportunity.closed",
                extra={"opportunity_id": opportunity.id, "company_id": opportunity.company_id, "stage": new_stage},
            )
        session.refresh(opportunity)
        return SalesOpportunityRead.model_validate(opportunity)


class DashboardService:
    company_repository = CompanyRepository()
    visit_repository = VisitRepository()
    opportunity_repository = SalesOpportunityRepository()

    def get_dashboard_data(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        now: datetime | None = None,
    ) -> DashboardData:
        started = time.perf_counter()
        with tracer.start_as_current_span("crm.dashboard.compute") as span:
            span.set_attribute("user_id", actor_user.user_id)
            span.set_attribute("role", actor_user.role)

            total_companies = session.scalar(
                self.company_repository.apply_scope_query(select(func.count(Company.id)), actor_user)
            )

            month_start, month_end = current_month_window(now)
            visits_this_month = session.scalar(
                self.visit_repository.apply_scope_query(
                    select(func.count(Visit.id)).where(Visit.visit_date.between(month_start, month_end)),
                    actor_user,
                )
            )

            active_count, active_value = session.execute(
                self.opportunity_repository.apply_scope_query(
                    select(
                        func.count(SalesOpportunity.id),
                        func.coalesce(func.sum(SalesOpportunity.value), 0),
                    ).where(SalesOpportunity.stage.not_in(sorted(TERMINAL_STAGES))),
                    actor_user,
                )
            ).one()

            recent_visits = session.scalars(
                self.visit_repository.apply_scope_query(select(Visit), actor_user)
                .order_by(Visit.visit_date.desc(), Visit.id.desc())
                .limit(get_settings().dashboard_recent_visits_limit)
            ).all()

            stage_rows = session.execute(
                self.opportunity_repository.apply_scope_query(
                    select(
                        SalesOpportunity.stage,
                        func.count(SalesOpportunity.id),
                        func.coalesce(func.sum(SalesOpportunity.value), 0),
                    ),
                    actor_user,
                ).group_by(SalesOpportunity.stage)
            ).all()
            by_stage = sorted(stage_rows, key=lambda row: PIPELINE_STAGES.index(row[0]))

            data = DashboardData(
                total_companies=total_companies or 0,
                total_visits_this_month=visits_this_month or 0,
                total_opportunities=active_count or 0,
                pipeline_value=float(_as_decimal(active_value)),
                recent_visits=[VisitRead.model_validate(visit) for visit in recent_visits],
                opportunities_by_stage=[
                    StageRollup(stage=stage, count=count, total_value=float(_as_decimal(total)))
                    for stage, count, total in by_stage
                ],
            )
            span.set_attribute("total_companies", data.total_companies)
            span.set_attribute("total_opportunities", data.total_opportunities)

        observe_dashboard(actor_user.role, time.perf_counter() - started)
        logger.info(
            "dashboard.computed",
            extra={
                "user_id": actor_user.user_id,
                "role": actor_user.role,
                "total_companies": data.total_companies,
                "total_opportunities": data.total_opportunities,
            },
        )
        return data
