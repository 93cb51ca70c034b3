# Identity comes from an upstream verification step (API gateway / auth
# proxy) as plain headers. Credentials are never parsed here.
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Request

from .errors import Forbidden, Unauthorized

USER_HEADER = "x-user-id"
ROLE_HEADER = "x-user-role"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Optional[str] = None


def identity_from_request(request: Request) -> Identity:
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        raise Unauthorized("Unauthorized: identity missing")
    role = (request.headers.get(ROLE_HEADER) or "").strip() or None
    return Identity(user_id=user_id, role=role)


def require_auth(request: Request) -> Identity:
    return identity_from_request(request)


def require_roles(allowed: Iterable[str]):
    allowed = frozenset(allowed)

    def dependency(request: Request) -> Identity:
        who = identity_from_request(request)
        if allowed and who.role not in allowed:
            raise Forbidden("Forbidden: insufficient permissions")
        return who

    return dependency
