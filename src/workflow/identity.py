"""Requester identity: signed-in account or anonymous browser session.

Anonymous readers are identified by an opaque random session token minted
here and echoed back by the browser. The client IP is only ever kept as a
salted SHA-256 digest.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from typing import Union

from src.config import settings
from src.models.enums import ActorRole, RequesterKind
from src.schemas.requests import RequestRecord

MAX_TOKEN_LENGTH = 128
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class AccountIdentity:
    """A signed-in reader (account id supplied by the auth gateway)."""

    account_id: str
    hashed_ip: str | None = None
    user_agent: str | None = None

    @property
    def kind(self) -> RequesterKind:
        return RequesterKind.ACCOUNT

    @property
    def key(self) -> str:
        return self.account_id


@dataclass(frozen=True)
class AnonymousSession:
    """An anonymous reader identified by a session token."""

    token: str
    hashed_ip: str | None = None
    user_agent: str | None = None

    @property
    def kind(self) -> RequesterKind:
        return RequesterKind.ANONYMOUS

    @property
    def key(self) -> str:
        return self.token


RequesterIdentity = Union[AccountIdentity, AnonymousSession]


@dataclass(frozen=True)
class Actor:
    """Someone driving a transition other than the requester (author, admin, system)."""

    actor_id: str
    role: ActorRole


SYSTEM_ACTOR = Actor(actor_id="system", role=ActorRole.SYSTEM)


def identity_key(identity: RequesterIdentity) -> str:
    """Stable key used for lock names and rate-limit grouping."""
    return f"{identity.kind.value}:{identity.key}"


def mint_session_token(nbytes: int | None = None) -> str:
    """Return a new hex session token (default 32 random bytes = 256 bits)."""
    return secrets.token_hex(nbytes or settings.workflow.session_token_bytes)


def is_well_formed_token(token: str | None) -> bool:
    return bool(token) and len(token) <= MAX_TOKEN_LENGTH and bool(_TOKEN_RE.match(token))


def resolve_or_create(existing_token: str | None) -> tuple[str, bool]:
    """Reuse a presented token verbatim, or mint a new one.

    Returns:
        (token, created): ``created`` is True when a new token was minted.
    """
    if is_well_formed_token(existing_token):
        return existing_token, False  # type: ignore[return-value]
    return mint_session_token(), True


def hash_ip(ip_address: str | None, salt: str | None = None) -> str | None:
    if not ip_address:
        return None
    salt = settings.workflow.ip_hash_salt if salt is None else salt
    return hashlib.sha256(f"{ip_address}{salt}".encode()).hexdigest()


def owns(record: RequestRecord, identity: RequesterIdentity) -> bool:
    """True when ``identity`` is the one that submitted ``record``."""
    if record.requester_kind != identity.kind:
        return False
    return secrets.compare_digest(record.requester_key.encode(), identity.key.encode())
