from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class DuplicateUsername(ConstraintViolation):
    """A user with the requested username already exists."""

    def __init__(self, username: str):
        super().__init__("Username already exists", {"field": "username"})
        self.username = username


class DuplicateIdentity(ConstraintViolation):
    """An email or Scalekit subject id is already bound to another user."""

    def __init__(self, field: str):
        super().__init__(f"{field} is already linked to another account", {"field": field})
        self.field = field


class UserNotFound(LookupError):
    """Raised when a mutation targets a user id the store does not hold."""

    def __init__(self, user_id: int):
        super().__init__(f"user {user_id} not found")
        self.user_id = user_id


__all__ = ["ConstraintViolation", "DuplicateUsername", "DuplicateIdentity", "UserNotFound"]
