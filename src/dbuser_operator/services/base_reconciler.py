"""
Generic reconciliation driver.

The driver owns everything that is the same for every reconciled resource:
loading the record, the skip policy, finalizer bookkeeping, the
last-applied annotation, writing the status once and deciding whether to
requeue. What to do with the remote system is delegated to a
``ReconcileStrategy``.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..constants import (
    DATABASE_USER_FINALIZER,
    LAST_APPLIED_CONFIGURATION_ANNOTATION,
    RECONCILIATION_POLICY_ANNOTATION,
    RECONCILIATION_POLICY_SKIP,
)
from ..errors import ResourceNotFoundError
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..utils.timeutil import format_iso8601
from .gateways import ResourceKey, ResourceStore
from .workflow import (
    ConditionReason,
    InProgress,
    NotFound,
    Outcome,
    Ready,
    Released,
    RetrieveFailed,
    Skip,
    Terminated,
    Transition,
    outcome_name,
    render_conditions,
)

logger = logging.getLogger(__name__)

# Outcomes that leave the record untouched
_NO_FINALIZER_OUTCOMES = (Released, Skip, NotFound, RetrieveFailed)


@dataclass(frozen=True)
class ReconcileResult:
    """
    What the dispatcher should do after a reconcile.

    Attributes:
        requeue_after: Seconds until the record should be reconciled again,
            None for no requeue
        fatal: The strategy raised an unexpected error
        converged: The record reached its Ready state
    """

    requeue_after: float | None = None
    fatal: bool = False
    converged: bool = False


class ReconcileStrategy(ABC):
    """Per-resource reconciliation logic plugged into the driver."""

    resource_type: str = "resource"
    finalizer: str = DATABASE_USER_FINALIZER

    @abstractmethod
    async def reconcile(self, record: dict[str, Any]) -> Transition:
        """
        Move the remote state one step towards the record's desired state.

        Args:
            record: The raw Kubernetes object

        Returns:
            The outcome of this step with any newly observed status values
        """
        raise NotImplementedError("Subclasses must implement reconcile method")

    def last_applied_configuration(self, record: dict[str, Any]) -> str:
        """Snapshot of the desired state stored after a successful transition."""
        return json.dumps(record.get("spec", {}), sort_keys=True, separators=(",", ":"))

    def validate_status(self, status: dict[str, Any]) -> dict[str, Any]:
        """Normalize a rendered status through the resource's status model."""
        return status


def is_being_deleted(record: dict[str, Any]) -> bool:
    return bool(record.get("metadata", {}).get("deletionTimestamp"))


def _merge_transition_times(
    conditions: list[dict[str, Any]],
    previous: list[dict[str, Any]],
    now: str,
) -> list[dict[str, Any]]:
    """Keep lastTransitionTime for conditions whose status did not change."""
    previous_by_type = {c.get("type"): c for c in previous}
    merged = []
    for condition in conditions:
        old = previous_by_type.get(condition["type"])
        if old is not None and old.get("status") == condition["status"]:
            transition_time = old.get("lastTransitionTime", now)
        else:
            transition_time = now
        merged.append({**condition, "lastTransitionTime": transition_time})
    return merged


class ReconciliationDriver:
    """Runs a strategy against one record and applies the result."""

    def __init__(
        self,
        store: ResourceStore,
        strategy: ReconcileStrategy,
        retry_interval: float,
    ):
        self.store = store
        self.strategy = strategy
        self.retry_interval = retry_interval
        self.logger = OperatorLogger(self.__class__.__name__)

    async def reconcile(
        self, key: ResourceKey, deadline: float | None = None
    ) -> ReconcileResult:
        """
        Reconcile one record.

        Args:
            key: Namespaced name of the record
            deadline: ``time.monotonic()`` value after which the status is
                no longer written

        Returns:
            Requeue instruction for the dispatcher
        """
        resource_type = self.strategy.resource_type

        try:
            record = await self.store.get(key)
        except Exception as e:
            self.logger.error(
                f"Failed to retrieve {resource_type} {key}: {e}",
                resource_type=resource_type,
                resource_name=key.name,
                namespace=key.namespace,
            )
            self._record(key, RetrieveFailed(str(e)))
            return ReconcileResult(requeue_after=self.retry_interval)

        if record is None:
            self.logger.debug(f"{resource_type} {key} not found, nothing to do")
            self._record(key, NotFound())
            return ReconcileResult()

        annotations = record.get("metadata", {}).get("annotations") or {}
        if annotations.get(RECONCILIATION_POLICY_ANNOTATION) == RECONCILIATION_POLICY_SKIP:
            self.logger.info(
                f"Skipping {resource_type} {key}: reconciliation policy is skip",
                resource_name=key.name,
                namespace=key.namespace,
            )
            self._record(key, Skip())
            return ReconcileResult()

        self.logger.log_reconciliation_start(
            resource_type=resource_type, resource_name=key.name, namespace=key.namespace
        )
        start_time = time.time()
        fatal = False

        async with metrics_collector.track_reconciliation(
            resource_type=resource_type, namespace=key.namespace
        ):
            try:
                transition = await self.strategy.reconcile(record)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.log_reconciliation_error(
                    resource_type=resource_type,
                    resource_name=key.name,
                    namespace=key.namespace,
                    error=e,
                    duration=time.time() - start_time,
                )
                transition = Transition(
                    Terminated(ConditionReason.INTERNAL_ERROR, str(e), retryable=False)
                )
                fatal = True

            outcome = await self._apply_side_effects(key, record, transition.outcome)
            written = await self._write_status(
                key, record, transition, outcome, deadline
            )

        self._record(key, outcome)
        self.logger.log_reconciliation_success(
            resource_type=resource_type,
            resource_name=key.name,
            namespace=key.namespace,
            duration=time.time() - start_time,
            outcome=outcome_name(outcome),
        )

        if written == "cancelled":
            return ReconcileResult(fatal=fatal)
        if written == "failed":
            return ReconcileResult(requeue_after=self.retry_interval, fatal=fatal)
        return ReconcileResult(
            requeue_after=self._requeue_after(outcome),
            fatal=fatal,
            converged=isinstance(outcome, Ready),
        )

    async def _apply_side_effects(
        self, key: ResourceKey, record: dict[str, Any], outcome: Outcome
    ) -> Outcome:
        """Ensure the finalizer and the last-applied annotation for the outcome."""
        metadata = record.get("metadata", {})

        if not isinstance(outcome, _NO_FINALIZER_OUTCOMES) and not is_being_deleted(
            record
        ):
            if self.strategy.finalizer not in (metadata.get("finalizers") or []):
                try:
                    await self.store.add_finalizer(key, self.strategy.finalizer)
                except Exception as e:
                    self.logger.error(f"Failed to set finalizer on {key}: {e}")
                    return Terminated(ConditionReason.FINALIZER_NOT_SET, str(e))

        if isinstance(outcome, (InProgress, Ready)):
            snapshot = self.strategy.last_applied_configuration(record)
            annotations = metadata.get("annotations") or {}
            if annotations.get(LAST_APPLIED_CONFIGURATION_ANNOTATION) != snapshot:
                try:
                    await self.store.set_annotation(
                        key, LAST_APPLIED_CONFIGURATION_ANNOTATION, snapshot
                    )
                except Exception as e:
                    self.logger.error(
                        f"Failed to store last applied configuration on {key}: {e}"
                    )
                    return Terminated(ConditionReason.INTERNAL_ERROR, str(e))

        return outcome

    def build_status(
        self, record: dict[str, Any], transition: Transition, outcome: Outcome
    ) -> dict[str, Any] | None:
        """
        Render the full status document for an outcome.

        Returns:
            The status to store, or None when the outcome writes no status
        """
        conditions = render_conditions(outcome)
        if conditions is None:
            return None

        previous = record.get("status") or {}
        status: dict[str, Any] = {
            "conditions": _merge_transition_times(
                conditions,
                previous.get("conditions") or [],
                format_iso8601(datetime.now(UTC)),
            ),
            "observedGeneration": record.get("metadata", {}).get("generation"),
            "username": transition.username or previous.get("username"),
            "passwordVersion": transition.password_version
            or previous.get("passwordVersion"),
        }
        return self.strategy.validate_status(status)

    async def _write_status(
        self,
        key: ResourceKey,
        record: dict[str, Any],
        transition: Transition,
        outcome: Outcome,
        deadline: float | None,
    ) -> str:
        """
        Replace the stored status when it differs from the rendered one.

        Returns:
            One of "none", "cancelled", "skipped", "written" or "failed"
        """
        resource_type = self.strategy.resource_type
        status = self.build_status(record, transition, outcome)
        if status is None:
            return "none"

        if deadline is not None and time.monotonic() > deadline:
            self.logger.warning(
                f"Deadline passed for {resource_type} {key}, not writing status"
            )
            metrics_collector.record_status_write(resource_type, "cancelled")
            return "cancelled"

        previous = record.get("status") or {}
        if all(previous.get(field) == value for field, value in status.items()):
            metrics_collector.record_status_write(resource_type, "skipped")
            return "skipped"

        try:
            await self.store.replace_status(key, status)
        except ResourceNotFoundError:
            # Gone after its finalizer was removed
            self.logger.debug(f"{resource_type} {key} disappeared before status write")
            return "skipped"
        except Exception as e:
            self.logger.error(f"Failed to write status of {key}: {e}")
            metrics_collector.record_status_write(resource_type, "failed")
            return "failed"
        metrics_collector.record_status_write(resource_type, "written")
        return "written"

    def _requeue_after(self, outcome: Outcome) -> float | None:
        match outcome:
            case InProgress():
                return self.retry_interval
            case Terminated(retryable=True):
                return self.retry_interval
            case Ready(requeue_after=requeue_after):
                return requeue_after
            case RetrieveFailed():
                return self.retry_interval
            case _:
                return None

    def _record(self, key: ResourceKey, outcome: Outcome) -> None:
        metrics_collector.record_outcome(
            self.strategy.resource_type, key.namespace, outcome_name(outcome)
        )
