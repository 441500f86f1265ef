from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Protocol

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ticketflow.audit.models import Actor
from ticketflow.lifecycle.errors import Unauthorized


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    ORGANIZER = "organizer"
    VIEWER = "viewer"


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated caller resolved from a bearer credential."""

    id: str
    email: str
    roles: tuple[Role, ...] = (Role.VIEWER,)

    def has_role(self, role: Role) -> bool:
        return role in self.roles or Role.ADMIN in self.roles

    def as_actor(self) -> Actor:
        return Actor.user(self.id)


class IdentityResolver(Protocol):
    def resolve(self, token: str | None) -> Identity:
        ...


class StaticTokenIdentityResolver:
    """Map configured bearer tokens to identities.

    Entries use the form ``"user_id:email:role1,role2"``; roles default to
    ``viewer`` when omitted.
    """

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._identities = {token: self._parse(entry) for token, entry in tokens.items()}

    @staticmethod
    def _parse(entry: str) -> Identity:
        user_id, _, rest = entry.partition(":")
        email, _, role_list = rest.partition(":")
        if not user_id:
            raise ValueError(f"Token entry {entry!r} has no user id")
        roles = tuple(Role(role.strip()) for role in role_list.split(",") if role.strip())
        return Identity(id=user_id, email=email, roles=roles or (Role.VIEWER,))

    def resolve(self, token: str | None) -> Identity:
        if not token:
            raise Unauthorized("Missing bearer credentials")
        identity = self._identities.get(token)
        if identity is None:
            raise Unauthorized("Invalid authentication credentials")
        return identity


bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_resolver(request: Request) -> IdentityResolver:
    resolver = getattr(request.app.state, "identity_resolver", None)
    if resolver is None:
        raise HTTPException(status_code=503, detail="Identity resolver is not configured")
    return resolver


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
) -> Identity:
    cached = getattr(request.state, "identity", None)
    if isinstance(cached, Identity):
        return cached

    token = credentials.credentials if credentials is not None else None
    try:
        identity = resolver.resolve(token)
    except Unauthorized as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": str(exc)},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    request.state.identity = identity
    return identity


def role_required(role: Role) -> Callable[..., Identity]:
    """Dependency factory ensuring the current identity has the requested role."""

    async def dependency(identity: Annotated[Identity, Depends(get_current_identity)]) -> Identity:
        if not identity.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    return dependency


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
