# telecare/security.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import crud, models
from .config import Settings
from .database import get_db
from .errors import RoleNotAllowed

security_logger = structlog.get_logger("telecare.security")

bearer_scheme = HTTPBearer(auto_error=False)


def create_identity_token(
    settings: Settings,
    external_id: str,
    role: models.AccountRole,
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a token shaped like the identity provider's; used for local runs and tests."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    claims: Dict[str, Any] = {"sub": external_id, "role": role.value, "exp": expire}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    if settings.identity_jwt_audience:
        claims["aud"] = settings.identity_jwt_audience
    return jwt.encode(claims, settings.identity_jwt_secret, algorithm=settings.identity_jwt_algorithm)


def verify_identity_token(settings: Settings, token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(
            token,
            settings.identity_jwt_secret,
            algorithms=[settings.identity_jwt_algorithm],
            audience=settings.identity_jwt_audience,
            options={"verify_aud": bool(settings.identity_jwt_audience)},
        )
    except JWTError as e:
        security_logger.info("identity_token_rejected", error=str(e))
        return None


def get_current_account(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.Account:
    """Resolve the bearer token to an Account, creating it on first access."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    payload = verify_identity_token(request.app.state.settings, credentials.credentials)
    if not payload:
        raise credentials_exception

    external_id = payload.get("sub")
    try:
        role = models.AccountRole(str(payload.get("role", "")).upper())
    except ValueError:
        raise credentials_exception
    if not external_id:
        raise credentials_exception

    return crud.get_or_create_account(
        db,
        external_id=external_id,
        role=role,
        email=payload.get("email"),
        name=payload.get("name"),
    )


def require_role(*allowed_roles: models.AccountRole):
    """Dependency factory for role-based access control"""
    def role_dependency(current_account: models.Account = Depends(get_current_account)) -> models.Account:
        if current_account.role not in allowed_roles:
            security_logger.info("access_denied", account_id=current_account.id, role=current_account.role.value)
            raise RoleNotAllowed(current_account.role, allowed_roles)
        return current_account

    return role_dependency


# Specific role dependencies
require_admin = require_role(models.AccountRole.ADMIN)
require_doctor = require_role(models.AccountRole.DOCTOR)
require_patient = require_role(models.AccountRole.PATIENT)
