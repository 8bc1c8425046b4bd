"""
DevMatch — Identity ordering.

All code that needs a deterministic order over two identities goes through
this module.  The comparator is the 16 raw bytes of the UUID: byte-wise order
is identical to the order of the lowercase hyphenated text form, to Python's
``uuid.UUID`` ordering and to PostgreSQL's ``uuid`` comparison, so the
``user1_id < user2_id`` invariant on ``matches`` holds for every reader and
writer.
"""

from __future__ import annotations

import uuid
from typing import Union

IdentityLike = Union[uuid.UUID, str]


class SelfPairError(ValueError):
    """Raised when a pair is formed from one identity with itself."""


def as_identity(value: IdentityLike) -> uuid.UUID:
    """Coerce a UUID or its string form into ``uuid.UUID``."""
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def identity_sort_key(value: IdentityLike) -> bytes:
    return as_identity(value).bytes


def canonical_pair(a: IdentityLike, b: IdentityLike) -> tuple[uuid.UUID, uuid.UUID]:
    """Return ``(low, high)`` for two distinct identities.

    >>> canonical_pair("22222222-2222-2222-2222-222222222222",
    ...                "11111111-1111-1111-1111-111111111111")[0].hex[:4]
    '1111'
    """
    ua, ub = as_identity(a), as_identity(b)
    if ua == ub:
        raise SelfPairError(f"Cannot pair identity {ua} with itself")
    if identity_sort_key(ua) < identity_sort_key(ub):
        return ua, ub
    return ub, ua


def other_participant(
    participants: tuple[IdentityLike, IdentityLike], me: IdentityLike
) -> uuid.UUID:
    """Return the participant that is not ``me``.

    Raises ``ValueError`` when ``me`` is not one of the two participants.
    """
    low, high = (as_identity(p) for p in participants)
    me_id = as_identity(me)
    if me_id == low:
        return high
    if me_id == high:
        return low
    raise ValueError(f"{me_id} is not a participant")
