"""
Readiness aggregation across the deployments of a project.

A user is only ready once every deployment it may log in to reports the
latest user changes as applied.
"""

import logging
from dataclasses import dataclass, field

from .connection_secrets import ConnectionSecretReaper
from .gateways import DeploymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadinessResult:
    ready: int
    total: int
    deployments: list[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.ready == self.total


class ReadinessAggregator:
    """Counts deployments that applied a user's changes."""

    def __init__(self, reaper: ConnectionSecretReaper):
        self.reaper = reaper

    async def evaluate(
        self,
        gateway: DeploymentGateway,
        namespace: str,
        project_id: str,
        scope_filter: list[str] | None = None,
    ) -> ReadinessResult:
        """
        Evaluate readiness of the deployments a user is scoped to.

        Connection secrets of the project pointing at deployments that no
        longer exist are reaped on the way. Scoped names without a matching
        deployment are dropped.

        Args:
            gateway: Remote deployment queries
            namespace: Namespace holding the connection secrets
            project_id: Remote project ID
            scope_filter: Deployment names from CLUSTER scopes, or None when
                the user is not restricted by scopes at all. A user with only
                non-cluster scopes passes an empty list and has nothing to check.

        Returns:
            Number of ready deployments out of the deployments in scope
        """
        existing = await gateway.list_deployment_names(project_id)
        await self.reaper.reap_orphans(namespace, project_id, existing)

        if scope_filter is not None:
            scoped = set(scope_filter)
            deployments = [name for name in existing if name in scoped]
        else:
            deployments = list(existing)

        ready = 0
        for name in deployments:
            if await gateway.is_ready(project_id, name):
                ready += 1
            else:
                logger.debug(
                    f"Deployment {name} has not applied user changes yet",
                    extra={"project_id": project_id, "deployment": name},
                )

        return ReadinessResult(ready=ready, total=len(deployments), deployments=deployments)
