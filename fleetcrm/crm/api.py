from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from fleetcrm.context import get_correlation_id
from fleetcrm.core.auth import AuthUser, get_current_user as get_auth_user
from fleetcrm.core.database import get_db
from fleetcrm.crm.errors import ConstraintError, CRMError, NotFoundError, ValidationError
from fleetcrm.crm.schemas import (
    MAX_PAGE_SIZE,
    CompanyCreate,
    CompanyListQuery,
    CompanyRead,
    CompanyUpdate,
    CompanyWithRelations,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    DashboardData,
    PipelineStage,
    SalesOpportunityCreate,
    SalesOpportunityListQuery,
    SalesOpportunityRead,
    SalesOpportunityUpdate,
    UserCreate,
    UserRead,
    VisitCreate,
    VisitListQuery,
    VisitRead,
)
from fleetcrm.crm.service import (
    ActorUser,
    CompanyService,
    ContactService,
    DashboardService,
    SalesOpportunityService,
    UserService,
    VisitService,
)

users_router = APIRouter(prefix="/api/crm", tags=["crm.users"])
companies_router = APIRouter(prefix="/api/crm/companies", tags=["crm.companies"])
contacts_router = APIRouter(prefix="/api/crm", tags=["crm.contacts"])
visits_router = APIRouter(prefix="/api/crm", tags=["crm.visits"])
opportunities_router = APIRouter(prefix="/api/crm", tags=["crm.opportunities"])
dashboard_router = APIRouter(prefix="/api/crm", tags=["crm.dashboard"])
user_service = UserService()
company_service = CompanyService()
contact_service = ContactService()
visit_service = VisitService()
opportunity_service = SalesOpportunityService()
dashboard_service = DashboardService()

_ERROR_STATUS: dict[type[CRMError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConstraintError: status.HTTP_409_CONFLICT,
}


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or request.headers.get("x-correlation-id")
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _failure(request: Request, exc: HTTPException | CRMError, code: str) -> JSONResponse:
    if isinstance(exc, HTTPException):
        return error_response(
            request,
            status_code=exc.status_code,
            code=code,
            message=str(exc.detail),
            details=exc.detail,
        )
    return error_response(
        request,
        status_code=_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        code=code,
        message=exc.message,
        details={"error": exc.code},
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or request.headers.get("x-correlation-id")
    return ActorUser(user_id=auth_user.user_id, role=auth_user.role, correlation_id=correlation_id)


def require_role(user: ActorUser, role: str) -> None:
    if user.role != role:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Requires role: {role}")


@users_router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        require_role(user, "MANAGEMENT")
        return user_service.create_user(db, dto)
    except (HTTPException, CRMError) as exc:
        return _failure(request, exc, "crm_user_create_failed")


@users_router.get("/users", response_model=list[UserRead])
def list_users(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[UserRead]:
    return user_service.list_users(db)


@companies_router.post("", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    request: Request,
    dto: CompanyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.create_company(db, user, dto)
    except CRMError as exc:
        return _failure(request, exc, "crm_company_create_failed")


@companies_router.get("", response_model=list[CompanyRead])
def list_companies(
    assigned_bdm: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[CompanyRead]:
    query = CompanyListQuery(assigned_bdm=assigned_bdm, limit=limit, offset=offset)
    return company_service.list_companies(db, query)


@companies_router.get("/{company_id}", response_model=CompanyWithRelations)
def get_company(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyWithRelations | JSONResponse:
    try:
        return company_service.get_company(db, company_id)
    except CRMError as exc:
        return _failure(request, exc, "crm_company_get_failed")


@companies_router.patch("/{company_id}", response_model=CompanyRead)
def patch_company(
    request: Request,
    company_id: int,
    dto: CompanyUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.update_company(db, company_id, dto)
    except CRMError as exc:
        return _failure(request, exc, "crm_company_update_failed")


@contacts_router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.create_contact(db, dto)
    except CRMError as exc:
        return _failure(request, exc, "crm_contact_create_failed")


@contacts_router.get("/contacts", response_model=list[ContactRead])
def list_contacts(
    company_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ContactRead]:
    return contact_service.list_contacts(db, company_id)


@contacts_router.patch("/contacts/{contact_id}", response_model=ContactRead)
def patch_contact(
    request: Request,
    contact_id: int,
    dto: ContactUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.update_contact(db, contact_id, dto)
    except CRMError as exc:
        return _failure(request, exc, "crm_contact_update_failed")


@visits_router.post("/visits", response_model=VisitRead, status_code=status.HTTP_201_CREATED)
def create_visit(
    request: Request,
    dto: VisitCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> VisitRead | JSONResponse:
    try:
        return visit_service.create_visit(db, user, dto)
    except CRMError as exc:
        return _failure(request, exc, "crm_visit_create_failed")


@visits_router.get("/visits", response_model=list[VisitRead])
def list_visits(
    company_id: int | None = Query(default=None),
    user_id: int | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[VisitRead]:
    query = VisitListQuery(
        company_id=company_id,
        user_id=user_id,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset,
    )
    return visit_service.list_visits(db, query)


@opportunities_router.post("/opportunities", response_model=SalesOpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    request: Request,
    dto: SalesOpportunityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SalesOpportunityRead | JSONResponse:
    try:
        return opportunity_service.create_opportunity(db, user, dto)
    except CRMError as exc:
        return _failure(request, exc, "crm_opportunity_create_failed")


@opportunities_router.get("/opportunities", response_model=list[SalesOpportunityRead])
def list_opportunities(
    company_id: int | None = Query(default=None),
    user_id: int | None = Query(default=None),
    stage: PipelineStage | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SalesOpportunityRead]:
    query = SalesOpportunityListQuery(company_id=company_id, user_id=user_id, stage=stage, limit=limit, offset=offset)
    return opportunity_service.list_opportunities(db, query)


@opportunities_router.patch("/opportunities/{opportunity_id}", response_model=SalesOpportunityRead)
def patch_opportunity(
    request: Request,
    opportunity_id: int,
    dto: SalesOpportunityUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SalesOpportunityRead | JSONResponse:
    try:
        return opportunity_service.update_opportunity(db, opportunity_id, dto)
    except CRMError as exc:
        return _failure(request, exc, "crm_opportunity_update_failed")


@dashboard_router.get("/dashboard", response_model=DashboardData)
def get_dashboard(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DashboardData:
    return dashboard_service.get_dashboard_data(db, user)
