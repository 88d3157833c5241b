"""
Drift detection between desired and remote database users.

Both sides are normalized into the same canonical shape before they are
compared, so ordering of roles and scopes or the layout of an expiry date
never shows up as drift.
"""

import logging
from typing import Any

from ..models.database_user import DatabaseUserSpec
from ..utils.timeutil import canonicalize_iso8601

logger = logging.getLogger(__name__)

# A normalized spec; plain alias so call sites document intent
NormalizedUser = DatabaseUserSpec


def normalize(spec: DatabaseUserSpec) -> NormalizedUser:
    """
    Return a canonical copy of a user spec.

    Roles are sorted by (roleName, databaseName, collectionName), scopes by
    (name, type) and ``deleteAfterDate`` is rewritten in the canonical UTC
    profile. Normalizing an already normalized spec returns an equal value.

    Raises:
        DateFormatError: If ``deleteAfterDate`` is not a valid ISO8601 date
    """
    delete_after_date = spec.delete_after_date
    if delete_after_date:
        delete_after_date = canonicalize_iso8601(delete_after_date)

    return spec.model_copy(
        update={
            "roles": sorted(spec.roles, key=lambda role: role.sort_key()),
            "scopes": sorted(spec.scopes, key=lambda scope: scope.sort_key()),
            "delete_after_date": delete_after_date or None,
        }
    )


def has_changed(
    local: NormalizedUser,
    remote: NormalizedUser,
    local_password_version: str | None,
    remote_password_version: str | None,
) -> bool:
    """
    Whether the remote user must be updated.

    True when the comparable fields differ or the password secret changed
    since it was last applied. The comparison is symmetric.
    """
    if (local_password_version or "") != (remote_password_version or ""):
        return True
    return local.comparable() != remote.comparable()


def diff_specs(a: NormalizedUser, b: NormalizedUser) -> list[str]:
    """List the comparable fields that differ, as ``field: old -> new`` lines."""
    left: dict[str, Any] = a.comparable()
    right: dict[str, Any] = b.comparable()
    return [
        f"{key}: {left.get(key)!r} -> {right.get(key)!r}"
        for key in sorted(set(left) | set(right))
        if left.get(key) != right.get(key)
    ]
