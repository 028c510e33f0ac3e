from fastapi import HTTPException, status

from .queries import MarketplaceQueries
from .schemas import UserRole


async def require_role(queries: MarketplaceQueries, allowed_roles: list[UserRole]) -> UserRole:
    """Ask the actor for the caller's role and reject roles outside `allowed_roles`."""
    result = await queries.get_caller_user_role()
    if result.is_error:
        raise result.error

    role = result.data
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Role unknown for caller",
        )

    if role not in set(allowed_roles):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )
    return role


async def require_admin(queries: MarketplaceQueries) -> None:
    result = await queries.is_caller_admin()
    if result.is_error:
        raise result.error
    if not result.data:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin only",
        )
