from __future__ import annotations

from typing import Iterable

from fastapi import Depends, HTTPException, Request, status

from interview_scheduling.core.config import settings
from interview_scheduling.core.roles import Role, has_required_role
from interview_scheduling.schemas.user import UserContext


async def get_current_user(request: Request) -> UserContext:
    # Identity is asserted by the upstream gateway through headers:
    # - X-User-Id: 42
    # - X-User-Email: recruiter@company.com
    # - X-User-Roles: recruiter,interviewer
    user_id = (request.headers.get("x-user-id") or "").strip()
    email = (request.headers.get("x-user-email") or "").strip().lower()

    if settings.auth_mode == "header" and not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity")

    if not email:
        email = "demo@example.com"
    if not user_id:
        user_id = email

    roles_header = request.headers.get("x-user-roles") or Role.RECRUITER.value
    roles: list[Role] = []
    for raw in roles_header.split(","):
        raw = raw.strip()
        if not raw:
            continue
        try:
            roles.append(Role(raw))
        except ValueError:
            continue

    if not roles:
        roles = [Role.VIEWER]

    return UserContext(
        user_id=user_id,
        email=email,
        roles=roles,
        full_name=request.headers.get("x-user-name") or _derive_name_from_email(email),
    )


def _derive_name_from_email(email: str) -> str:
    local = email.split("@", 1)[0].strip()
    if not local:
        return email
    parts = [p for p in local.replace("_", ".").split(".") if p]
    if not parts:
        return local
    return " ".join(p[:1].upper() + p[1:] for p in parts)


def require_roles(required: Iterable[Role]):
    required = tuple(required)

    async def dependency(user: UserContext = Depends(get_current_user)) -> UserContext:
        if not has_required_role(user.roles, required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency
