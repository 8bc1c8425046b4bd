"""
DevMatch — Domain error taxonomy.

Services raise these; ``app.main`` turns them into HTTP responses.  The
``reportable`` flag marks the classes that are forwarded to the error
tracker (access-policy rejections).  Validation, rate-limit, conflict and
not-found errors are expected outcomes and are never reported.
"""

from __future__ import annotations

import math


class DevMatchError(Exception):
    """Base class for every expected, user-facing failure."""

    status_code: int = 400
    reportable: bool = False
    public_message: str | None = None

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    @property
    def detail(self) -> str:
        return self.public_message or self.message


# ── (a) validation ───────────────────────────────────────────────────────────

class ValidationFailedError(DevMatchError):
    status_code = 422


class MessageValidationError(ValidationFailedError):
    pass


class SelfSwipeError(ValidationFailedError):
    def __init__(self) -> None:
        super().__init__("You cannot swipe on yourself.")


class ProfileValidationError(ValidationFailedError):
    pass


# ── (b) access policy ───────────────────────────────────────────────────────

class AccessDeniedError(DevMatchError):
    status_code = 403
    reportable = True
    public_message = "Operation not permitted."


# ── (c) rate limiting ───────────────────────────────────────────────────────

class RateLimitedError(DevMatchError):
    status_code = 429

    def __init__(self, key: str, retry_after: float) -> None:
        self.key = key
        self.retry_after = max(1, math.ceil(retry_after))
        super().__init__(f"Too many attempts. Try again in {self.retry_after}s.")


# ── conflicts / missing rows ─────────────────────────────────────────────────

class ConflictError(DevMatchError):
    status_code = 409


class SwipeConflictError(ConflictError):
    def __init__(self) -> None:
        super().__init__("You have already swiped on this profile.")


class ProfileExistsError(ConflictError):
    def __init__(self) -> None:
        super().__init__("A profile already exists for this account.")


class NotFoundError(DevMatchError):
    status_code = 404
