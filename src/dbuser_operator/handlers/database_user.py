"""
DatabaseUser handlers - Routes kopf events into the reconciliation driver.

Every event (create, resume, update, delete and the periodic re-sync of
users bound to an external project) runs the same level-triggered
reconciliation. The handler only translates the driver's requeue
instruction into kopf's retry signals:

- fatal errors become ``kopf.PermanentError``
- pending work becomes ``kopf.TemporaryError`` with the requested delay
- a converged or terminal record returns normally
"""

import asyncio
import logging
import random
import time
from typing import Any

import kopf

from dbuser_operator.constants import API_GROUP, API_VERSION, DATABASE_USER_PLURAL
from dbuser_operator.errors import ReconciliationError, TemporaryError
from dbuser_operator.observability.logging import (
    generate_correlation_id,
    set_correlation_id,
)
from dbuser_operator.observability.tracing import traced_handler
from dbuser_operator.services import ReconcileResult, ReconciliationDriver
from dbuser_operator.services.gateways import ResourceKey
from dbuser_operator.settings import settings as operator_settings

logger = logging.getLogger(__name__)


def _has_external_project(spec: dict[str, Any], **_: Any) -> bool:
    return bool(spec.get("externalProjectRef"))


def apply_result(result: ReconcileResult, key: ResourceKey) -> None:
    """
    Translate a reconcile result into kopf control flow.

    Raises:
        kopf.PermanentError: If the reconciliation failed unexpectedly
        kopf.TemporaryError: If the record needs another pass
    """
    if result.fatal:
        raise ReconciliationError(
            f"Reconciliation of DatabaseUser {key} failed", retryable=False
        ).as_kopf_error()
    if result.requeue_after is not None and not result.converged:
        raise TemporaryError(
            f"DatabaseUser {key} is not ready yet", delay=result.requeue_after
        ).as_kopf_error()


async def reconcile_database_user(
    driver: ReconciliationDriver, name: str, namespace: str
) -> ReconcileResult:
    """Run one reconciliation of a DatabaseUser within the configured deadline."""
    set_correlation_id(generate_correlation_id())

    jitter = random.uniform(0, operator_settings.reconcile_jitter_max_seconds)
    await asyncio.sleep(jitter)

    key = ResourceKey(namespace, name)
    deadline = time.monotonic() + operator_settings.reconcile_timeout_seconds
    return await driver.reconcile(key, deadline=deadline)


@kopf.on.create(DATABASE_USER_PLURAL, group=API_GROUP, version=API_VERSION)
@kopf.on.resume(DATABASE_USER_PLURAL, group=API_GROUP, version=API_VERSION)
@kopf.on.update(DATABASE_USER_PLURAL, group=API_GROUP, version=API_VERSION)
@traced_handler("reconcile_database_user")
async def ensure_database_user(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Converge a DatabaseUser towards its desired state.

    Args:
        name: Name of the DatabaseUser resource
        namespace: Namespace where the resource exists
        memo: Operator memo holding the reconciliation driver
    """
    logger.info(f"Reconciling DatabaseUser {name} in namespace {namespace}")
    result = await reconcile_database_user(memo.driver, name, namespace)
    apply_result(result, ResourceKey(namespace, name))


@kopf.on.delete(DATABASE_USER_PLURAL, group=API_GROUP, version=API_VERSION)
@traced_handler("delete_database_user")
async def delete_database_user(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Clean up a DatabaseUser that is being deleted.

    The driver removes the remote user (subject to the deletion policy), its
    connection secrets and the finalizer. Failures are retried by kopf, which
    keeps the resource in place until cleanup succeeds.
    """
    logger.info(f"Deleting DatabaseUser {name} in namespace {namespace}")
    result = await reconcile_database_user(memo.driver, name, namespace)
    apply_result(result, ResourceKey(namespace, name))


@kopf.timer(
    DATABASE_USER_PLURAL,
    group=API_GROUP,
    version=API_VERSION,
    interval=operator_settings.independent_sync_period_seconds,
    initial_delay=operator_settings.independent_sync_period_seconds,
    when=_has_external_project,
)
async def resync_external_project_user(
    name: str,
    namespace: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Periodically re-reconcile users bound to an external project.

    Nothing in the cluster changes when such a project's deployments do, so
    these users are polled instead.
    """
    if meta.get("deletionTimestamp"):
        return

    logger.debug(f"Re-syncing DatabaseUser {name} in namespace {namespace}")
    result = await reconcile_database_user(memo.driver, name, namespace)
    if result.fatal:
        logger.error(f"Periodic re-sync of DatabaseUser {namespace}/{name} failed")
