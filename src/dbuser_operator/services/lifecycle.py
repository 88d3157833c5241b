"""Lifecycle decision for a database user."""

from datetime import datetime
from enum import Enum

from ..utils.timeutil import parse_iso8601


class LifecycleAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    UNMANAGE = "unmanage"


def is_expired(delete_after_date: str | None, now: datetime) -> bool:
    """
    Whether the expiry date has passed.

    Raises:
        DateFormatError: If the date is not a valid ISO8601 date
    """
    if not delete_after_date:
        return False
    return parse_iso8601(delete_after_date) < now


def decide(
    remote_exists: bool, desired_was_deleted: bool, expired: bool
) -> LifecycleAction:
    """Pick the lifecycle transition; the first matching rule wins."""
    if expired:
        return LifecycleAction.UNMANAGE
    if not remote_exists and not desired_was_deleted:
        return LifecycleAction.CREATE
    if remote_exists and not desired_was_deleted:
        return LifecycleAction.UPDATE
    if remote_exists:
        return LifecycleAction.DELETE
    return LifecycleAction.UNMANAGE
