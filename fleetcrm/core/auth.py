from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from opentelemetry import trace
from starlette.requests import Request

from fleetcrm.core.config import get_settings

VALID_ROLES = {"BDM", "MANAGEMENT"}


@dataclass
class AuthUser:
    user_id: int
    role: str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def issue_token(user_id: int, role: str) -> str:
    settings = get_settings()
    return jwt.encode({"sub": str(user_id), "role": role}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    if not token:
        raise _unauthorized("Not authenticated")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise _unauthorized("Invalid token")

    try:
        user_id = int(payload.get("sub", ""))
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token subject")

    role = str(payload.get("role", "")).upper()
    if role not in VALID_ROLES:
        raise _unauthorized("Invalid token role")
    request.state.user_id = user_id
    request.state.role = role
    span = trace.get_current_span()
    if span is not None and span.is_recording():
        span.set_attribute("enduser.id", str(user_id))
        span.set_attribute("enduser.role", role)
    return AuthUser(user_id=user_id, role=role)
