"""FastAPI dependencies: workflow engine, requester identity, author actor, throttle."""
# ruff: noqa: B008

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.db.engine import get_session
from src.models.enums import ActorRole, RequestStatus
from src.security.rate_limiter import rate_limiter
from src.workflow.engine import PhysicalLetterWorkflow, build_workflow
from src.workflow.errors import ValidationError
from src.workflow.identity import (
    AccountIdentity,
    Actor,
    AnonymousSession,
    RequesterIdentity,
    hash_ip,
    resolve_or_create,
)

logger = logging.getLogger(__name__)

SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


async def get_workflow(db: AsyncSession = Depends(get_session)) -> PhysicalLetterWorkflow:
    return build_workflow(db)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


async def get_requester(request: Request, response: Response) -> RequesterIdentity:
    """Signed-in account (gateway header) or anonymous session token.

    A missing or malformed token is replaced by a freshly minted one, which
    is sent back both as a cookie and as the session header.
    """
    wf = settings.workflow
    hashed = hash_ip(client_ip(request))
    user_agent = request.headers.get("user-agent")

    account_id = (request.headers.get(wf.account_header_name) or "").strip()
    if account_id:
        return AccountIdentity(account_id=account_id, hashed_ip=hashed, user_agent=user_agent)

    presented = request.headers.get(wf.session_header_name) or request.cookies.get(wf.session_cookie_name)
    token, created = resolve_or_create(presented)
    if created:
        logger.debug("Minted new anonymous session")
        response.set_cookie(
            wf.session_cookie_name,
            token,
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=settings.is_production,
        )
    response.headers[wf.session_header_name] = token
    return AnonymousSession(token=token, hashed_ip=hashed, user_agent=user_agent)


async def get_author(request: Request) -> Actor:
    """The signed-in account acting as a letter author."""
    account_id = (request.headers.get(settings.workflow.account_header_name) or "").strip()
    if not account_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="로그인이 필요합니다.")
    return Actor(actor_id=account_id, role=ActorRole.AUTHOR)


async def throttle_submissions(identity: RequesterIdentity = Depends(get_requester)) -> RequesterIdentity:
    """Burst throttle per hashed client IP (session/account when no IP is known)."""
    client_key = identity.hashed_ip or hash_ip(identity.key) or "unknown"
    await rate_limiter.enforce_submission(client_key)
    return identity


def parse_status(value: str | None) -> RequestStatus | None:
    if not value:
        return None
    try:
        return RequestStatus.parse(value)
    except ValueError:
        raise ValidationError("status", f"알 수 없는 상태입니다: {value}") from None
