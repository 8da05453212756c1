"""Service-specific exceptions for the chat engine.

Every rejection a caller can see is a ServiceError subclass carrying an
error code, debugging context and a user-facing message. Store failures are
translated into StoreUnavailableError at the service boundary so callers
never have to know about SQLAlchemy or Redis exception types.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class ServiceError(Exception):
    """Base exception for all service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
        user_message: str | None = None
    ):
        """Initialize service error.

        Args:
            message: Technical error message for logging
            error_code: Unique error code for categorization
            context: Additional context data for debugging
            user_message: User-friendly error message
        """
        super().__init__(message)
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        self.user_message = user_message or message

    def get_user_message(self) -> str:
        """Get user-friendly error message."""
        return self.user_message


class ValidationError(ServiceError):
    """Raised when input data doesn't meet validation requirements."""

    def __init__(self, field: str, message: str, **kwargs):
        super().__init__(
            f"Validation failed for {field}: {message}",
            error_code="VALIDATION_FAILED",
            context={"field": field},
            user_message=message,
            **kwargs
        )
        self.field = field


class InvalidTagError(ValidationError):
    """Raised when a group name has no alphanumeric characters left."""

    def __init__(self, raw_tag: str, **kwargs):
        super().__init__("tag", f"'{raw_tag}' is not a valid group name", **kwargs)
        self.error_code = "INVALID_TAG"
        self.raw_tag = raw_tag


class StoreUnavailableError(ServiceError):
    """Raised when a persistence, realtime or presence call fails.

    The operation was abandoned and no partial write happened; the engine
    never retries on its own.
    """

    def __init__(self, operation: str, **kwargs):
        super().__init__(
            f"Store unavailable during {operation}",
            error_code="STORE_UNAVAILABLE",
            context={"operation": operation},
            user_message="That didn't go through. Please try again.",
            **kwargs
        )
        self.operation = operation


class MessageNotFoundError(ServiceError):
    """Raised when a message was deleted or never existed."""

    def __init__(self, message_id: int, **kwargs):
        super().__init__(
            f"Message not found: {message_id}",
            error_code="MESSAGE_NOT_FOUND",
            context={"message_id": message_id},
            user_message="This message no longer exists.",
            **kwargs
        )
        self.message_id = message_id


class GroupError(ServiceError):
    """Base exception for hashtag group errors."""
    pass


class AlreadyOwnsGroupError(GroupError):
    """Raised when a user who owns an active group tries to create another."""

    def __init__(self, existing_tag: str, existing_community: str, **kwargs):
        super().__init__(
            f"User already owns #{existing_tag} in {existing_community}",
            error_code="ALREADY_OWNS_GROUP",
            context={"tag": existing_tag, "community": existing_community},
            user_message=(
                f"You already have an active group: #{existing_tag} in {existing_community}. "
                "You can only create one group total."
            ),
            **kwargs
        )
        self.existing_tag = existing_tag
        self.existing_community = existing_community


class GroupExistsError(GroupError):
    """Raised when an explicitly created group's tag is already taken."""

    def __init__(self, tag: str, community: str, **kwargs):
        super().__init__(
            f"Group #{tag} already exists in {community}",
            error_code="GROUP_EXISTS",
            context={"tag": tag, "community": community},
            user_message=f"#{tag} already exists. Join it instead!",
            **kwargs
        )
        self.tag = tag
        self.community = community


class QuotaExceededError(ServiceError):
    """Raised when an author has used up today's confessions."""

    def __init__(self, limit: int, resets_at: datetime, **kwargs):
        super().__init__(
            f"Confession quota of {limit} exhausted until {resets_at.isoformat()}",
            error_code="QUOTA_EXCEEDED",
            context={"limit": limit, "resets_at": resets_at.isoformat()},
            user_message=(
                f"You can only post {limit} confessions per day. "
                "Try again after midnight IST."
            ),
            **kwargs
        )
        self.limit = limit
        self.resets_at = resets_at
