from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core.security import bearer_scheme, decode_access_token
from revshare.db.session import get_db
from revshare.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, User


async def get_current_user(
    credentials=Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency for protected endpoints.
    """
    user_id = decode_access_token(credentials.credentials)

    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user = await db.get(User, user_uuid)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if not getattr(user, "is_active", True):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive")

    return user


def require_role(*roles: str) -> Callable:
    allowed = set(roles)

    async def _checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "ROLE_FORBIDDEN",
                    "kind": "forbidden",
                    "message": f"Insufficient role: {' or '.join(sorted(allowed))} required",
                },
            )
        return user

    return _checker


require_admin = require_role(ROLE_ADMIN)
require_instructor = require_role(ROLE_INSTRUCTOR)
require_instructor_or_admin = require_role(ROLE_INSTRUCTOR, ROLE_ADMIN)
