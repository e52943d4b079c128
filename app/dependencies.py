"""
Invoicemonk - FastAPI Dependencies

Shared dependencies for authentication, database sessions, and
business-scoped access control.

This module provides dependency injection for:
1. Current user authentication (JWT bearer or cookie)
2. Business membership checks for /businesses/{business_id}/... routes
3. Role-based access within a business
4. The actor context recorded on audit entries
"""

import uuid
from typing import List, Optional

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.models.business import Business
from app.models.user import BusinessMember, BusinessRole, User
from app.services.audit_service import ActorContext
from app.utils.security import verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_async_session),
) -> User:
    """
    Get the current authenticated user from JWT token.

    Token can be provided via:
    1. Authorization: Bearer <token> header
    2. access_token cookie

    Raises:
        HTTPException: If token is invalid or user not found
    """
    token = None

    # Try Bearer header first
    if credentials:
        token = credentials.credentials
    else:
        # Fallback to cookie
        token = request.cookies.get("access_token")
        if token and token.startswith("Bearer "):
            token = token[7:]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_access_token(token)

    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in token",
        )

    user = await db.get(User, user_uuid)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Get current user and verify they are active."""
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    return current_user


async def verify_business_access(
    business_id: uuid.UUID,
    user: User,
    db: AsyncSession,
) -> BusinessMember:
    """
    Verify user is a member of the business.

    Raises:
        HTTPException: 404 if business not found, 403 if access denied
    """
    business = await db.get(Business, business_id)
    if not business:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Business not found",
        )

    result = await db.execute(
        select(BusinessMember).where(
            BusinessMember.business_id == business_id,
            BusinessMember.user_id == user.id,
        )
    )
    membership = result.scalar_one_or_none()
    if not membership:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this business",
        )
    return membership


async def get_business_membership(
    business_id: uuid.UUID,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_async_session),
) -> BusinessMember:
    """Membership of the current user in the business from the URL path."""
    return await verify_business_access(business_id, current_user, db)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_request_context(request: Request) -> ActorContext:
    """Anonymous actor for public routes."""
    return ActorContext.public(
        source_ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


async def get_actor(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    membership: BusinessMember = Depends(get_business_membership),
) -> ActorContext:
    """Actor context for audit entries of business-scoped routes."""
    return ActorContext(
        user_id=current_user.id,
        role=membership.role.value,
        email_verified=current_user.is_verified,
        source_ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def require_business_role(allowed_roles: List[BusinessRole]):
    """
    Dependency factory for business role-based access control.

    Usage:
        @router.post("/", dependencies=[Depends(require_business_role([BusinessRole.OWNER]))])
    """
    async def role_checker(
        membership: BusinessMember = Depends(get_business_membership),
    ) -> BusinessMember:
        if membership.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[r.value for r in allowed_roles]}",
            )
        return membership

    return role_checker


# Roles that may change invoices; auditors are read-only.
WRITER_ROLES = [BusinessRole.OWNER, BusinessRole.ADMIN, BusinessRole.MEMBER]
ADMIN_ROLES = [BusinessRole.OWNER, BusinessRole.ADMIN]


def require_writer():
    return require_business_role(WRITER_ROLES)


def require_business_admin():
    return require_business_role(ADMIN_ROLES)
