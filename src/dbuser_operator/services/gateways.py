"""
Contracts consumed by the reconciliation services.

The services only talk to the remote API and to Kubernetes through these
protocols, which keeps them testable with in-memory fakes. The production
implementations live in ``dbuser_operator.utils``.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from ..models.remote_api import DeploymentConnection, RemoteDatabaseUser


@dataclass(frozen=True)
class ResourceKey:
    """Namespaced name of a custom resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class StoredSecret:
    """A Kubernetes secret with its data already decoded to text."""

    name: str
    namespace: str
    data: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    resource_version: str | None = None


class RemoteUserGateway(Protocol):
    """Database user operations of the remote administration API."""

    async def get_user(
        self, project_id: str, database_name: str, username: str
    ) -> RemoteDatabaseUser | None:
        """Fetch a user, None when it does not exist."""
        ...

    async def create_user(self, user: RemoteDatabaseUser) -> RemoteDatabaseUser: ...

    async def update_user(self, user: RemoteDatabaseUser) -> RemoteDatabaseUser: ...

    async def delete_user(
        self, project_id: str, database_name: str, username: str
    ) -> None:
        """Delete a user, raising RemoteNotFoundError when it does not exist."""
        ...


class DeploymentGateway(Protocol):
    """Deployment (cluster) queries of the remote administration API."""

    async def list_deployment_names(self, project_id: str) -> list[str]: ...

    async def cluster_exists(self, project_id: str, name: str) -> bool: ...

    async def is_ready(self, project_id: str, name: str) -> bool:
        """True when the deployment reports all user changes as applied."""
        ...

    async def list_connection_endpoints(
        self, project_id: str
    ) -> list[DeploymentConnection]: ...


class RemoteGateway(RemoteUserGateway, DeploymentGateway, Protocol):
    """Both halves of the remote API, as served by one client."""


class RemoteGatewayProvider(Protocol):
    """Hands out a remote client for the credentials a resource uses."""

    async def get_gateway(
        self, namespace: str, credentials_secret: str | None = None
    ) -> RemoteGateway: ...


class SecretStore(Protocol):
    """Kubernetes secret access."""

    async def get(self, namespace: str, name: str) -> StoredSecret | None: ...

    async def create(self, secret: StoredSecret) -> None: ...

    async def update(self, secret: StoredSecret) -> None: ...

    async def delete(self, namespace: str, name: str) -> None:
        """Delete a secret; deleting a missing secret is not an error."""
        ...

    async def list(self, namespace: str, labels: dict[str, str]) -> list[StoredSecret]: ...


class ResourceStore(Protocol):
    """Access to the custom resources the operator reconciles."""

    async def get(self, key: ResourceKey) -> dict[str, Any] | None:
        """Fetch the raw object, None when it does not exist."""
        ...

    async def add_finalizer(self, key: ResourceKey, finalizer: str) -> None: ...

    async def remove_finalizer(self, key: ResourceKey, finalizer: str) -> None: ...

    async def set_annotation(self, key: ResourceKey, name: str, value: str) -> None: ...

    async def replace_status(self, key: ResourceKey, status: dict[str, Any]) -> None: ...

    async def get_project_id(self, name: str, namespace: str) -> str:
        """Resolve a DatabaseProject reference to its remote project ID."""
        ...
