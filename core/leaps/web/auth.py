"""Role-based authorization for API routes."""

from functools import wraps
from typing import Any, Callable, Optional

from flask import g, request
from werkzeug.exceptions import Forbidden, Unauthorized

from ..domain.agent import User
from ..domain.meta import UserRole, UserType


def get_user() -> Optional[User]:
    """Get the authenticated user for the current request, if any."""
    claims = request.environ.get('auth')
    if not claims:
        return None
    return User(claims['user_id'], email=claims['email'],
                name=claims['name'],
                role=claims.get('role') or UserRole.PARTICIPANT,
                user_type=claims.get('user_type') or UserType.EDUCATOR,
                hostname=request.remote_addr)


def require_role(role: str) -> Callable:
    """Generate a decorator that requires at least ``role``."""
    def protector(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            user = get_user()
            if user is None:
                raise Unauthorized('Authentication required')
            if user.is_student or not user.has_role(role):
                raise Forbidden('Insufficient permissions')
            g.user = user
            return func(*args, **kwargs)
        return wrapper
    return protector
