from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from fleetcrm.core.auth import AuthUser, get_current_user
from fleetcrm.core.config import get_settings
from fleetcrm.metrics import generate_metrics_payload, metrics_content_type
from fleetcrm.crm.api import (
    companies_router,
    contacts_router,
    dashboard_router,
    opportunities_router,
    users_router,
    visits_router,
)

router = APIRouter()
router.include_router(users_router)
router.include_router(companies_router)
router.include_router(contacts_router)
router.include_router(visits_router)
router.include_router(opportunities_router)
router.include_router(dashboard_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, int | str]:
    return {
        "user_id": user.user_id,
        "role": user.role,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role != "MANAGEMENT":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Requires role: MANAGEMENT")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
