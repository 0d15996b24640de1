"""HTTP Basic Auth for the admin endpoints.

Single shared password from ADMIN_WEB_PASSWORD; the Basic username is
recorded as the admin's actor id (approved_by, admin note authorship).
"""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from src.config import settings
from src.models.enums import ActorRole
from src.workflow.identity import Actor

security = HTTPBasic()


async def verify_admin(
    credentials: HTTPBasicCredentials = Depends(security),  # noqa: B008
) -> Actor:
    """FastAPI dependency: verify HTTP Basic credentials.

    Returns the admin Actor on success, raises 401 on failure.
    """
    expected = settings.security.admin_web_password
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ADMIN_WEB_PASSWORD not configured",
        )

    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"),
        expected.encode("utf-8"),
    )
    if not password_ok or not credentials.username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return Actor(actor_id=credentials.username, role=ActorRole.ADMIN)
