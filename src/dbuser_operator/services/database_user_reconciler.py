"""
DatabaseUser reconciliation strategy.

Validates a DatabaseUser record, resolves its project and remote client,
decides the lifecycle transition and carries it out against the remote
administration API, including connection secret bookkeeping.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import pydantic

from ..constants import (
    AUTH_TYPE_NONE,
    CONDITION_DATABASE_USER_READY,
    CONDITION_RESOURCE_VERSION,
    ERROR_PASSWORD_FIELD_EMPTY,
    ERROR_PASSWORD_FIELD_MISSING,
    ERROR_PASSWORD_SECRET_NOT_FOUND,
    ERROR_SCOPES_INVALID,
    ERROR_VERSION_MISMATCH,
    MESSAGE_DEPLOYMENTS_PROGRESS,
    MESSAGE_DEPLOYMENTS_SCHEDULED,
    MESSAGE_EXPIRED,
    MESSAGE_RELEASED,
    MESSAGE_WAITING_FOR_CONNECTIONS,
    OLD_USER_DELETE_ATTEMPTS,
    PASSWORD_KEY,
    RESOURCE_POLICY_ANNOTATION,
    RESOURCE_POLICY_DELETE,
    RESOURCE_POLICY_KEEP,
    RESOURCE_VERSION_ANNOTATION,
)
from ..errors import DateFormatError, PasswordSecretError, RemoteNotFoundError
from ..models.database_user import DatabaseUserSpec, DatabaseUserStatus
from ..models.remote_api import RemoteDatabaseUser
from ..observability.metrics import metrics_collector
from ..utils.retry import retry_async
from .base_reconciler import ReconcileStrategy, is_being_deleted
from .connection_secrets import ConnectionSecretMaterializer, ConnectionSecretReaper
from .drift_detection import diff_specs, has_changed, normalize
from .gateways import (
    RemoteGateway,
    RemoteGatewayProvider,
    ResourceKey,
    ResourceStore,
    SecretStore,
)
from .lifecycle import LifecycleAction, decide, is_expired
from .readiness import ReadinessAggregator
from .workflow import (
    ConditionReason,
    InProgress,
    Invalid,
    Outcome,
    Ready,
    Released,
    Terminated,
    Transition,
    Unsupported,
)

logger = logging.getLogger(__name__)

_SEMVER = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)(?:[-+].*)?$")


def parse_semver(value: str) -> tuple[int, int, int] | None:
    """Parse ``MAJOR.MINOR.PATCH`` with an optional ``v`` prefix."""
    match = _SEMVER.match(value.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def check_resource_version(
    annotations: dict[str, str], operator_version: str
) -> Invalid | None:
    """
    Validate the resource-version annotation against the operator version.

    Records without the annotation are accepted, and so is everything when
    the operator itself does not run a release version (e.g. ``dev``).
    """
    resource_version = annotations.get(RESOURCE_VERSION_ANNOTATION)
    if not resource_version:
        return None

    parsed = parse_semver(resource_version)
    if parsed is None:
        return Invalid(
            CONDITION_RESOURCE_VERSION,
            ConditionReason.RESOURCE_VERSION_INVALID,
            f"{resource_version} is not a valid semver version for label "
            f"{RESOURCE_VERSION_ANNOTATION}",
        )

    operator = parse_semver(operator_version)
    if operator is not None and parsed > operator:
        return Invalid(
            CONDITION_RESOURCE_VERSION,
            ConditionReason.RESOURCE_VERSION_MISMATCH,
            ERROR_VERSION_MISMATCH.format(resource_version, operator_version),
        )
    return None


@dataclass
class UserContext:
    """Everything resolved about one record before the lifecycle transition."""

    record: dict[str, Any]
    key: ResourceKey
    spec: DatabaseUserSpec
    project_id: str
    gateway: RemoteGateway
    remote: RemoteDatabaseUser | None
    observed_username: str | None
    observed_password_version: str | None


class DatabaseUserReconciler(ReconcileStrategy):
    """Reconciliation strategy for DatabaseUser resources."""

    resource_type = "databaseuser"

    def __init__(
        self,
        store: ResourceStore,
        secrets: SecretStore,
        gateways: RemoteGatewayProvider,
        operator_version: str,
        *,
        restricted_mode: bool = False,
        deletion_protection: bool = False,
        independent_sync_period: float = 900.0,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the strategy.

        Args:
            store: DatabaseUser and DatabaseProject access
            secrets: Kubernetes secret access
            gateways: Provider of remote API clients
            operator_version: Version resources are validated against
            restricted_mode: Reject features unavailable in restricted clouds
            deletion_protection: Keep remote users unless a resource opts in
            independent_sync_period: Re-poll interval for external projects
            clock: Source of the current time, UTC
        """
        self.store = store
        self.secrets = secrets
        self.gateways = gateways
        self.operator_version = operator_version
        self.restricted_mode = restricted_mode
        self.deletion_protection = deletion_protection
        self.independent_sync_period = independent_sync_period
        self.clock = clock or (lambda: datetime.now(UTC))
        self.reaper = ConnectionSecretReaper(secrets)
        self.materializer = ConnectionSecretMaterializer(secrets)
        self.readiness = ReadinessAggregator(self.reaper)

    def validate_status(self, status: dict[str, Any]) -> dict[str, Any]:
        return DatabaseUserStatus.model_validate(status).to_status_dict()

    async def reconcile(self, record: dict[str, Any]) -> Transition:
        metadata = record.get("metadata", {})
        key = ResourceKey(metadata["namespace"], metadata["name"])

        invalid = check_resource_version(
            metadata.get("annotations") or {}, self.operator_version
        )
        if invalid is not None:
            return Transition(invalid)

        try:
            spec = DatabaseUserSpec.model_validate(record.get("spec") or {})
        except pydantic.ValidationError as e:
            return Transition(
                Invalid(
                    CONDITION_DATABASE_USER_READY, ConditionReason.INVALID_SPEC, str(e)
                )
            )

        if self.restricted_mode and spec.oidc_auth_type != AUTH_TYPE_NONE:
            return Transition(
                Unsupported("OIDC authentication is not supported in restricted mode")
            )

        try:
            project_id = await self._resolve_project_id(spec, key.namespace)
            gateway = await self.gateways.get_gateway(
                key.namespace,
                spec.connection_secret.name if spec.connection_secret else None,
            )
        except Exception as e:
            logger.error(f"Failed to resolve project of {key}: {e}")
            return Transition(
                Terminated(ConditionReason.API_ACCESS_NOT_CONFIGURED, str(e))
            )

        try:
            remote = await gateway.get_user(
                project_id, spec.database_name, spec.username
            )
        except Exception as e:
            return Transition(Terminated(ConditionReason.INTERNAL_ERROR, str(e)))

        status = record.get("status") or {}
        ctx = UserContext(
            record=record,
            key=key,
            spec=spec,
            project_id=project_id,
            gateway=gateway,
            remote=remote,
            observed_username=status.get("username"),
            observed_password_version=status.get("passwordVersion"),
        )

        try:
            expired = is_expired(spec.delete_after_date, self.clock())
        except DateFormatError as e:
            return Transition(
                Invalid(
                    CONDITION_DATABASE_USER_READY,
                    ConditionReason.INVALID_SPEC,
                    e.message,
                )
            )
        if expired:
            return Transition(await self._expire(ctx))

        deleted = is_being_deleted(record)
        if not deleted:
            invalid_scope = await self._check_scopes(ctx)
            if invalid_scope is not None:
                return Transition(invalid_scope)

        action = decide(remote is not None, deleted, expired)
        logger.debug(
            f"Lifecycle action for {key}: {action.value}",
            extra={"project_id": project_id, "username": spec.username},
        )

        match action:
            case LifecycleAction.CREATE:
                return await self._create(ctx)
            case LifecycleAction.UPDATE:
                return await self._update(ctx)
            case LifecycleAction.DELETE:
                return Transition(await self._delete(ctx))
            case LifecycleAction.UNMANAGE:
                return Transition(
                    await self._unmanage(
                        ctx, ConditionReason.UNMANAGED, MESSAGE_RELEASED
                    )
                )

    async def _resolve_project_id(self, spec: DatabaseUserSpec, namespace: str) -> str:
        if spec.external_project_ref is not None:
            return spec.external_project_ref.project_id
        ref = spec.project_ref
        return await self.store.get_project_id(ref.name, ref.namespace or namespace)

    async def _check_scopes(self, ctx: UserContext) -> Outcome | None:
        try:
            for name in ctx.spec.cluster_scopes():
                if not await ctx.gateway.cluster_exists(ctx.project_id, name):
                    logger.warning(
                        f"Scope of {ctx.key} refers to missing deployment {name}",
                        extra={"project_id": ctx.project_id, "deployment": name},
                    )
                    return Invalid(
                        CONDITION_DATABASE_USER_READY,
                        ConditionReason.INVALID_SPEC,
                        ERROR_SCOPES_INVALID,
                    )
        except Exception as e:
            return Terminated(ConditionReason.INTERNAL_ERROR, str(e))
        return None

    async def _resolve_password(self, ctx: UserContext) -> tuple[str, str | None]:
        """
        Read the password from the referenced secret.

        Returns:
            The password and the secret's resourceVersion; empty and None for
            users that do not authenticate with a password

        Raises:
            PasswordSecretError: If the secret is missing or unusable
        """
        ref = ctx.spec.password_secret_ref
        if ref is None:
            if ctx.spec.uses_password:
                raise PasswordSecretError("passwordSecretRef must be set")
            return "", None

        secret = await self.secrets.get(ctx.key.namespace, ref.name)
        if secret is None:
            raise PasswordSecretError(ERROR_PASSWORD_SECRET_NOT_FOUND.format(ref.name))
        if PASSWORD_KEY not in secret.data:
            raise PasswordSecretError(ERROR_PASSWORD_FIELD_MISSING.format(ref.name))
        if not secret.data[PASSWORD_KEY]:
            raise PasswordSecretError(ERROR_PASSWORD_FIELD_EMPTY.format(ref.name))
        return secret.data[PASSWORD_KEY], secret.resource_version

    async def _create(self, ctx: UserContext) -> Transition:
        try:
            password, password_version = await self._resolve_password(ctx)
        except PasswordSecretError as e:
            return Transition(
                Terminated(ConditionReason.NOT_CREATED, e.message, retryable=e.retryable)
            )

        desired = normalize(ctx.spec)
        try:
            await ctx.gateway.create_user(
                RemoteDatabaseUser.from_spec(desired, ctx.project_id, password)
            )
        except Exception as e:
            logger.error(f"Failed to create database user for {ctx.key}: {e}")
            return Transition(
                Terminated(ConditionReason.NOT_CREATED, str(e), retryable=True)
            )
        logger.info(
            f"Created database user {desired.username} for {ctx.key}",
            extra={"project_id": ctx.project_id, "username": desired.username},
        )

        cleanup = await self._cleanup_renamed_user(ctx, password_version)
        if cleanup is not None:
            return cleanup

        return Transition(
            InProgress(
                ConditionReason.DEPLOYMENT_APPLIED_CHANGES, MESSAGE_DEPLOYMENTS_SCHEDULED
            ),
            username=ctx.spec.username,
            password_version=password_version,
        )

    async def _update(self, ctx: UserContext) -> Transition:
        cleanup = await self._cleanup_renamed_user(ctx)
        if cleanup is not None:
            return cleanup

        try:
            password, password_version = await self._resolve_password(ctx)
        except PasswordSecretError as e:
            return Transition(
                Terminated(ConditionReason.NOT_UPDATED, e.message, retryable=e.retryable)
            )

        try:
            desired = normalize(ctx.spec)
            current = normalize(ctx.remote.to_spec())
        except (DateFormatError, pydantic.ValidationError) as e:
            return Transition(Terminated(ConditionReason.INTERNAL_ERROR, str(e)))

        if not has_changed(
            desired, current, password_version, ctx.observed_password_version
        ):
            outcome = await self._check_readiness(ctx, password)
            return Transition(outcome, username=ctx.spec.username)

        for line in diff_specs(current, desired):
            logger.debug(f"Database user {ctx.key} drifted: {line}")

        try:
            await ctx.gateway.update_user(
                RemoteDatabaseUser.from_spec(desired, ctx.project_id, password)
            )
        except Exception as e:
            logger.error(f"Failed to update database user for {ctx.key}: {e}")
            return Transition(
                Terminated(ConditionReason.NOT_UPDATED, str(e), retryable=True)
            )
        logger.info(
            f"Updated database user {desired.username} for {ctx.key}",
            extra={"project_id": ctx.project_id, "username": desired.username},
        )

        return Transition(
            InProgress(
                ConditionReason.DEPLOYMENT_APPLIED_CHANGES, MESSAGE_DEPLOYMENTS_SCHEDULED
            ),
            username=ctx.spec.username,
            password_version=password_version,
        )

    async def _cleanup_renamed_user(
        self, ctx: UserContext, password_version: str | None = None
    ) -> Transition | None:
        """
        Remove what is left of a user's previous name.

        Secrets of the old name are reaped first. Deleting the old remote user
        is retried a few times; when that keeps failing the error is reported
        and the new user stays in place.

        The old name stays recorded until its secrets are gone, so a failed
        reap is repeated on the next pass. A failed remote delete is not.
        """
        old_username = ctx.observed_username
        if not old_username or old_username == ctx.spec.username:
            return None

        try:
            await self.reaper.reap_user(ctx.key.namespace, ctx.project_id, old_username)
        except Exception as e:
            return Transition(
                Terminated(ConditionReason.CONNECTION_SECRETS_NOT_DELETED, str(e))
            )

        try:
            await retry_async(
                lambda: ctx.gateway.delete_user(
                    ctx.project_id, ctx.spec.database_name, old_username
                ),
                operation_name=f"Deleting renamed database user {old_username}",
                max_attempts=OLD_USER_DELETE_ATTEMPTS,
                is_success=lambda e: isinstance(e, RemoteNotFoundError),
            )
        except Exception as e:
            logger.error(
                f"Giving up deleting old database user {old_username} of {ctx.key}: {e}",
                extra={"project_id": ctx.project_id, "username": old_username},
            )
            return Transition(
                Terminated(ConditionReason.INTERNAL_ERROR, str(e)),
                username=ctx.spec.username,
                password_version=password_version,
            )
        return None

    async def _check_readiness(self, ctx: UserContext, password: str) -> Outcome:
        try:
            result = await self.readiness.evaluate(
                ctx.gateway,
                ctx.key.namespace,
                ctx.project_id,
                ctx.spec.cluster_scopes() if ctx.spec.scopes else None,
            )
        except Exception as e:
            return Terminated(ConditionReason.INTERNAL_ERROR, str(e))

        metrics_collector.update_deployment_readiness(
            ctx.key.namespace, ctx.key.name, result.ready, result.total
        )
        if not result.converged:
            return InProgress(
                ConditionReason.DEPLOYMENT_APPLIED_CHANGES,
                MESSAGE_DEPLOYMENTS_PROGRESS.format(
                    ready=result.ready, total=result.total
                ),
            )

        try:
            in_scope = set(result.deployments)
            connections = [
                connection
                for connection in await ctx.gateway.list_connection_endpoints(
                    ctx.project_id
                )
                if connection.name in in_scope
            ]
            await self.reaper.reap_out_of_scope(
                ctx.key.namespace, ctx.project_id, ctx.spec.username, result.deployments
            )
            await self.materializer.materialize(
                ctx.record, ctx.project_id, ctx.spec.username, password, connections
            )
        except Exception as e:
            logger.error(f"Failed to write connection secrets of {ctx.key}: {e}")
            return Terminated(ConditionReason.CONNECTION_SECRETS_NOT_CREATED, str(e))

        if not all(connection.has_connection_strings for connection in connections):
            return InProgress(
                ConditionReason.CONNECTION_SECRETS_NOT_CREATED,
                MESSAGE_WAITING_FOR_CONNECTIONS,
            )

        if ctx.spec.external_project_ref is not None:
            return Ready(requeue_after=self.independent_sync_period)
        return Ready()

    def _retain_remote(self, record: dict[str, Any]) -> bool:
        annotations = record.get("metadata", {}).get("annotations") or {}
        policy = annotations.get(RESOURCE_POLICY_ANNOTATION)
        if policy == RESOURCE_POLICY_KEEP:
            return True
        return self.deletion_protection and policy != RESOURCE_POLICY_DELETE

    async def _delete_remote(self, ctx: UserContext) -> Outcome | None:
        try:
            await ctx.gateway.delete_user(
                ctx.project_id, ctx.spec.database_name, ctx.spec.username
            )
        except RemoteNotFoundError:
            logger.debug(f"Database user of {ctx.key} already gone")
        except Exception as e:
            logger.error(f"Failed to delete database user of {ctx.key}: {e}")
            return Terminated(ConditionReason.NOT_DELETED, str(e))
        else:
            logger.info(
                f"Deleted database user {ctx.spec.username} of {ctx.key}",
                extra={"project_id": ctx.project_id, "username": ctx.spec.username},
            )
        return None

    async def _delete(self, ctx: UserContext) -> Outcome:
        if self._retain_remote(ctx.record):
            logger.info(
                f"Keeping database user {ctx.spec.username} of {ctx.key} in the project"
            )
        else:
            failed = await self._delete_remote(ctx)
            if failed is not None:
                return failed
        return await self._unmanage(ctx, ConditionReason.DELETED, MESSAGE_RELEASED)

    async def _expire(self, ctx: UserContext) -> Outcome:
        logger.info(
            f"Database user {ctx.spec.username} of {ctx.key} expired",
            extra={"project_id": ctx.project_id, "username": ctx.spec.username},
        )
        try:
            await self.reaper.reap_user(ctx.key.namespace, ctx.project_id, ctx.spec.username)
        except Exception as e:
            return Terminated(ConditionReason.CONNECTION_SECRETS_NOT_DELETED, str(e))

        if ctx.remote is not None:
            failed = await self._delete_remote(ctx)
            if failed is not None:
                return failed
        return await self._unmanage(
            ctx, ConditionReason.EXPIRED, MESSAGE_EXPIRED, reap=False
        )

    async def _unmanage(
        self,
        ctx: UserContext,
        reason: ConditionReason,
        message: str,
        reap: bool = True,
    ) -> Outcome:
        if reap:
            try:
                await self.reaper.reap_user(
                    ctx.key.namespace, ctx.project_id, ctx.spec.username
                )
            except Exception as e:
                return Terminated(ConditionReason.CONNECTION_SECRETS_NOT_DELETED, str(e))

        try:
            await self.store.remove_finalizer(ctx.key, self.finalizer)
        except Exception as e:
            return Terminated(ConditionReason.FINALIZER_NOT_REMOVED, str(e))
        return Released(reason, message)
