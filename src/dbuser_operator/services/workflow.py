"""
Reconciliation outcomes and their rendering into status conditions.

Every reconcile ends in exactly one outcome. The driver uses the outcome to
decide on finalizers, annotations and requeueing, and renders it into the
status conditions through ``render_conditions``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..constants import (
    CONDITION_DATABASE_USER_READY,
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_RESOURCE_VERSION,
    CONDITION_TRUE,
    CONDITION_VALIDATION_SUCCEEDED,
)


class ConditionReason(str, Enum):
    """Machine readable reasons attached to status conditions."""

    DEPLOYMENT_APPLIED_CHANGES = "DatabaseUserDeploymentAppliedChanges"
    INVALID_SPEC = "DatabaseUserInvalidSpec"
    NOT_CREATED = "DatabaseUserNotCreated"
    NOT_UPDATED = "DatabaseUserNotUpdated"
    NOT_DELETED = "DatabaseUserNotDeleted"
    CONNECTION_SECRETS_NOT_CREATED = "DatabaseUserConnectionSecretsNotCreated"
    CONNECTION_SECRETS_NOT_DELETED = "DatabaseUserConnectionSecretsNotDeleted"
    EXPIRED = "DatabaseUserExpired"
    UNMANAGED = "DatabaseUserUnmanaged"
    DELETED = "DatabaseUserDeleted"
    FINALIZER_NOT_SET = "FinalizerNotSet"
    FINALIZER_NOT_REMOVED = "FinalizerNotRemoved"
    INTERNAL_ERROR = "InternalError"
    API_ACCESS_NOT_CONFIGURED = "APIAccessNotConfigured"
    RESOURCE_VERSION_INVALID = "ResourceVersionIsInvalid"
    RESOURCE_VERSION_MISMATCH = "ResourceVersionMismatch"
    NOT_SUPPORTED = "NotSupported"


@dataclass(frozen=True)
class Skip:
    """Reconciliation disabled through the reconciliation-policy annotation."""


@dataclass(frozen=True)
class NotFound:
    """The record no longer exists."""


@dataclass(frozen=True)
class RetrieveFailed:
    """The record could not be read from the store."""

    message: str


@dataclass(frozen=True)
class Invalid:
    """The desired state cannot be acted upon until the user fixes it."""

    condition: str
    reason: ConditionReason
    message: str


@dataclass(frozen=True)
class Unsupported:
    """The desired state uses a feature unavailable in this environment."""

    message: str


@dataclass(frozen=True)
class InProgress:
    """Changes were submitted and are waiting to be applied."""

    reason: ConditionReason
    message: str


@dataclass(frozen=True)
class Terminated:
    """A step failed; ``retryable`` tells whether trying again may help."""

    reason: ConditionReason
    message: str
    retryable: bool = True
    condition: str = CONDITION_DATABASE_USER_READY


@dataclass(frozen=True)
class Ready:
    """Remote state matches the desired state on every deployment in scope."""

    requeue_after: float | None = None


@dataclass(frozen=True)
class Released:
    """
    The record is no longer managed; its finalizer has been removed.

    Records that still exist afterwards, such as expired users, keep a
    status saying why they were let go.
    """

    reason: ConditionReason
    message: str


Outcome = (
    Skip
    | NotFound
    | RetrieveFailed
    | Invalid
    | Unsupported
    | InProgress
    | Terminated
    | Ready
    | Released
)


@dataclass(frozen=True)
class Transition:
    """
    Result of one strategy run.

    ``username`` and ``password_version`` carry newly observed values to
    record in the status; None keeps the previously stored value.
    """

    outcome: Outcome
    username: str | None = None
    password_version: str | None = None


def outcome_name(outcome: Outcome) -> str:
    """Short name used for logging and metrics labels."""
    return type(outcome).__name__


def _condition(
    type_: str, status: bool, reason: ConditionReason | None = None, message: str = ""
) -> dict[str, Any]:
    condition: dict[str, Any] = {
        "type": type_,
        "status": CONDITION_TRUE if status else CONDITION_FALSE,
    }
    if reason is not None:
        condition["reason"] = reason.value
    if message:
        condition["message"] = message
    return condition


def _validated() -> list[dict[str, Any]]:
    return [
        _condition(CONDITION_RESOURCE_VERSION, True),
        _condition(CONDITION_VALIDATION_SUCCEEDED, True),
    ]


def render_conditions(outcome: Outcome) -> list[dict[str, Any]] | None:
    """
    Render the status conditions for an outcome.

    Conditions are returned without ``lastTransitionTime``; the driver fills
    it in when comparing against the stored status.

    Returns:
        Ordered list of conditions, or None when the outcome writes no status
    """
    match outcome:
        case Skip() | NotFound() | RetrieveFailed():
            return None
        case Released(reason=reason, message=message):
            return [
                _condition(CONDITION_READY, False, reason, message),
                _condition(CONDITION_DATABASE_USER_READY, False, reason, message),
                *_validated(),
            ]
        case Invalid(condition=condition, reason=reason, message=message):
            conditions = [_condition(CONDITION_READY, False, reason, message)]
            if condition != CONDITION_READY:
                conditions.append(_condition(condition, False, reason, message))
            if condition != CONDITION_VALIDATION_SUCCEEDED:
                conditions.append(
                    _condition(CONDITION_VALIDATION_SUCCEEDED, False, reason, message)
                )
            return conditions
        case Unsupported(message=message):
            reason = ConditionReason.NOT_SUPPORTED
            return [
                _condition(CONDITION_READY, False, reason, message),
                _condition(CONDITION_VALIDATION_SUCCEEDED, False, reason, message),
            ]
        case InProgress(reason=reason, message=message):
            return [
                _condition(CONDITION_READY, False, reason, message),
                _condition(CONDITION_DATABASE_USER_READY, False, reason, message),
                *_validated(),
            ]
        case Terminated(reason=reason, message=message, condition=condition):
            conditions = [_condition(CONDITION_READY, False, reason, message)]
            if condition != CONDITION_READY:
                conditions.append(_condition(condition, False, reason, message))
            return conditions + _validated()
        case Ready():
            return [
                _condition(CONDITION_READY, True),
                _condition(CONDITION_DATABASE_USER_READY, True),
                *_validated(),
            ]
        case _:
            raise TypeError(f"Unknown outcome: {outcome!r}")
