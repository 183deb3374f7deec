"""Authentication helpers shared across blueprints."""

from __future__ import annotations

from functools import wraps
from typing import Callable, TypeVar, cast

from flask import jsonify
from flask_login import current_user

F = TypeVar('F', bound=Callable[..., object])


def _error(message: str, status: int):
    return jsonify({'error': message}), status


def delegate_required(func: F) -> F:
    """Decorator requiring an authenticated, active user."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return _error('Authentication required', 401)
        if not current_user.is_active:
            return _error('Your account is inactive', 403)
        return func(*args, **kwargs)
    return cast(F, wrapper)


def admin_required(func: F) -> F:
    """Decorator to ensure the current user has administrator privileges."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return _error('Authentication required', 401)

        if not current_user.is_active or not current_user.is_admin:
            return _error('Administrator privileges required', 403)

        return func(*args, **kwargs)

    return cast(F, wrapper)


__all__ = [
    'admin_required',
    'delegate_required',
]
