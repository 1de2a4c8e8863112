"""Shared dependencies for API endpoints.

Local-first mode uses DEFAULT_USER_ID; hosted mode validates a JWT from
the session cookie. Billing webhooks authenticate with a shared secret
header instead of a user session.
"""

import hmac
import uuid
from typing import Annotated

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from nexus_quota.core.config import settings
from nexus_quota.core.database import get_db
from nexus_quota.core.errors import AdminRequiredError, UnauthorizedError
from nexus_quota.models import User
from nexus_quota.repositories.user_repository import UserRepository


async def get_current_user_id(request: Request) -> uuid.UUID:
    """Get current user ID from auth context.

    Validation steps (hosted mode):
    1. Read JWT from cookie
    2. Decode + verify signature (HS256)
    3. Verify exp, aud, iss claims
    4. Extract sub as UUID

    Args:
        request: HTTP request (injected by FastAPI).

    Returns:
        UUID of the current authenticated user.

    Raises:
        UnauthorizedError: 401 for any auth failure.
    """
    if not settings.auth_enabled:
        # Local-first mode: use DEFAULT_USER_ID from environment
        if settings.default_user_id is None:
            raise UnauthorizedError()
        return settings.default_user_id

    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise UnauthorizedError()

    # Security: never say WHY auth failed (expired, bad sig, etc.).
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        return uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise UnauthorizedError() from exc


# Reusable type aliases for dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


async def require_admin(user_id: CurrentUserId, db: DbSession) -> User:
    """Load the current user and require the admin flag.

    Args:
        user_id: Current user ID (injected by get_current_user_id).
        db: Database session (injected).

    Returns:
        The admin User.

    Raises:
        UnauthorizedError: If the user no longer exists.
        AdminRequiredError: If the user is not an admin.
    """
    user = await UserRepository.get_by_id(db, user_id)
    if user is None:
        raise UnauthorizedError()
    if not user.is_admin:
        raise AdminRequiredError()
    return user


AdminUser = Annotated[User, Depends(require_admin)]


def verify_billing_secret(
    x_billing_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Authenticate the billing webhook forwarding hop.

    Args:
        x_billing_secret: Value of the X-Billing-Secret header.

    Raises:
        UnauthorizedError: If the secret is missing, unset, or wrong.
    """
    expected = settings.billing_webhook_secret.get_secret_value()
    if not expected or not x_billing_secret:
        raise UnauthorizedError()
    if not hmac.compare_digest(x_billing_secret.encode(), expected.encode()):
        raise UnauthorizedError()


BillingWebhookAuth = Annotated[None, Depends(verify_billing_secret)]
