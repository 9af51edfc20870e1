from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from agency_crm.context import set_actor_user_id
from agency_crm.core.config import get_settings

AUTH_COOKIE_NAME = "auth-token"


@dataclass
class AuthUser:
    sub: str
    email: str
    role: str


def _extract_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer ") :].strip()
    return request.cookies.get(AUTH_COOKIE_NAME, "")


async def get_current_user(request: Request) -> AuthUser:
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    set_actor_user_id(subject)
    return AuthUser(sub=subject, email=str(payload.get("email", "")), role=str(payload.get("role", "SALES_REP")))
