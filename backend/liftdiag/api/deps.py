"""FastAPI dependency injection — auth guards and service providers."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from liftdiag import config
from liftdiag.db import storage_configured
from liftdiag.services.diagnostic_pipeline import DiagnosticPipeline
from liftdiag.services.diagnostic_store import DiagnosticStore
from liftdiag.services.record_source import LookerRecordSource, RecordSource
from liftdiag.services.report_engine import ReportRenderer

security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None


def decode_user(token: str) -> Optional[CurrentUser]:
    """Claims -> CurrentUser. The id falls back to the email claim."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub") or payload.get("email")
    if not user_id:
        return None
    return CurrentUser(
        id=str(user_id),
        name=payload.get("name"),
        email=payload.get("email"),
        country=payload.get("country"),
    )


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Optional[CurrentUser]:
    """Returns user if authenticated, None otherwise (for public endpoints)."""
    if not credentials:
        return None
    return decode_user(credentials.credentials)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = decode_user(credentials.credentials)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user


# ── Service providers (overridden in tests) ───────────────────────────────────

def get_record_source() -> RecordSource:
    return LookerRecordSource()


def get_pipeline(source: RecordSource = Depends(get_record_source)) -> DiagnosticPipeline:
    return DiagnosticPipeline(source=source)


def get_store() -> Optional[DiagnosticStore]:
    """None when persistence is disabled or no database is configured."""
    if not config.ENABLE_STORAGE or not storage_configured():
        return None
    return DiagnosticStore()


def get_renderer() -> ReportRenderer:
    return ReportRenderer()
