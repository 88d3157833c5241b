"""Shared pytest fixtures with in-memory stand-ins for Kubernetes and the remote API."""

import copy
from datetime import UTC, datetime
from typing import Any

import pytest

from dbuser_operator.constants import API_GROUP, API_VERSION, DATABASE_USER_KIND
from dbuser_operator.errors import RemoteNotFoundError, ResourceNotFoundError
from dbuser_operator.models.remote_api import DeploymentConnection, RemoteDatabaseUser
from dbuser_operator.services.gateways import ResourceKey, StoredSecret

NAMESPACE = "default"
PROJECT_ID = "proj-1"
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


class FakeResourceStore:
    """DatabaseUser and DatabaseProject records kept in a dict."""

    def __init__(self):
        self.records: dict[ResourceKey, dict[str, Any]] = {}
        self.projects: dict[tuple[str, str], str | None] = {}
        self.status_writes: list[tuple[ResourceKey, dict[str, Any]]] = []
        self.fail_get: Exception | None = None
        self.fail_status: Exception | None = None
        self.fail_finalizer: Exception | None = None

    def put(self, record: dict[str, Any]) -> ResourceKey:
        metadata = record["metadata"]
        key = ResourceKey(metadata["namespace"], metadata["name"])
        self.records[key] = record
        return key

    async def get(self, key):
        if self.fail_get is not None:
            raise self.fail_get
        record = self.records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def add_finalizer(self, key, finalizer):
        if self.fail_finalizer is not None:
            raise self.fail_finalizer
        finalizers = self.records[key]["metadata"].setdefault("finalizers", [])
        if finalizer not in finalizers:
            finalizers.append(finalizer)

    async def remove_finalizer(self, key, finalizer):
        record = self.records.get(key)
        if record is None:
            return
        metadata = record["metadata"]
        metadata["finalizers"] = [
            f for f in metadata.get("finalizers", []) if f != finalizer
        ]
        # Kubernetes drops a deleted object once its last finalizer is gone
        if metadata.get("deletionTimestamp") and not metadata["finalizers"]:
            del self.records[key]

    async def set_annotation(self, key, name, value):
        if key not in self.records:
            raise ResourceNotFoundError(f"{key} not found")
        annotations = self.records[key]["metadata"].setdefault("annotations", {})
        annotations[name] = value

    async def replace_status(self, key, status):
        if self.fail_status is not None:
            raise self.fail_status
        if key not in self.records:
            raise ResourceNotFoundError(f"{key} not found")
        self.records[key]["status"] = copy.deepcopy(status)
        self.status_writes.append((key, copy.deepcopy(status)))

    async def get_project_id(self, name, namespace):
        if (namespace, name) not in self.projects:
            raise ResourceNotFoundError(f"DatabaseProject {namespace}/{name} not found")
        return self.projects[(namespace, name)]


class FakeSecretStore:
    """Kubernetes secrets kept in a dict keyed by (namespace, name)."""

    def __init__(self):
        self.secrets: dict[tuple[str, str], StoredSecret] = {}
        self.deleted: list[str] = []
        self.fail_list: Exception | None = None
        self._version = 0

    def put(self, secret: StoredSecret) -> StoredSecret:
        self.secrets[(secret.namespace, secret.name)] = secret
        return secret

    def _bump(self, secret: StoredSecret) -> StoredSecret:
        self._version += 1
        stored = copy.deepcopy(secret)
        stored.resource_version = str(self._version)
        return stored

    async def get(self, namespace, name):
        secret = self.secrets.get((namespace, name))
        return copy.deepcopy(secret) if secret is not None else None

    async def create(self, secret):
        assert (secret.namespace, secret.name) not in self.secrets
        self.secrets[(secret.namespace, secret.name)] = self._bump(secret)

    async def update(self, secret):
        assert (secret.namespace, secret.name) in self.secrets
        self.secrets[(secret.namespace, secret.name)] = self._bump(secret)

    async def delete(self, namespace, name):
        self.secrets.pop((namespace, name), None)
        self.deleted.append(name)

    async def list(self, namespace, labels):
        if self.fail_list is not None:
            raise self.fail_list
        return [
            copy.deepcopy(secret)
            for (ns, _), secret in self.secrets.items()
            if ns == namespace
            and all(secret.labels.get(k) == v for k, v in labels.items())
        ]


class FakeRemoteGateway:
    """Remote users and deployments of any number of projects."""

    def __init__(self):
        self.users: dict[tuple[str, str, str], RemoteDatabaseUser] = {}
        # project -> deployment name -> applied
        self.deployments: dict[str, dict[str, bool]] = {}
        self.calls: list[tuple[str, ...]] = []
        self.errors: dict[str, Exception] = {}
        # deployments still being created report no connection strings
        self.without_connection_strings: set[str] = set()

    def _check(self, operation: str, *args: str) -> None:
        self.calls.append((operation, *args))
        if operation in self.errors:
            raise self.errors[operation]

    def add_user(self, user: RemoteDatabaseUser) -> None:
        self.users[(user.group_id, user.database_name, user.username)] = user

    async def get_user(self, project_id, database_name, username):
        self._check("get_user", project_id, username)
        user = self.users.get((project_id, database_name, username))
        return user.model_copy(update={"password": None}, deep=True) if user else None

    async def create_user(self, user):
        self._check("create_user", user.group_id, user.username)
        self.add_user(user.model_copy(deep=True))
        return user

    async def update_user(self, user):
        self._check("update_user", user.group_id, user.username)
        self.add_user(user.model_copy(deep=True))
        return user

    async def delete_user(self, project_id, database_name, username):
        self._check("delete_user", project_id, username)
        if self.users.pop((project_id, database_name, username), None) is None:
            raise RemoteNotFoundError(f"user {username} not found")

    async def list_deployment_names(self, project_id):
        self._check("list_deployment_names", project_id)
        return list(self.deployments.get(project_id, {}))

    async def cluster_exists(self, project_id, name):
        self._check("cluster_exists", project_id, name)
        return name in self.deployments.get(project_id, {})

    async def is_ready(self, project_id, name):
        self._check("is_ready", project_id, name)
        return self.deployments[project_id][name]

    async def list_connection_endpoints(self, project_id):
        self._check("list_connection_endpoints", project_id)
        return [
            DeploymentConnection(name=name)
            if name in self.without_connection_strings
            else DeploymentConnection(
                name=name,
                url=f"mongodb://{name}-shard-00.example.net:27017/?ssl=true",
                srv_url=f"mongodb+srv://{name}.example.net",
            )
            for name in self.deployments.get(project_id, {})
        ]

    def operations(self, operation: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0] == operation]


class FakeGatewayProvider:
    def __init__(self, gateway: FakeRemoteGateway):
        self.gateway = gateway
        self.requests: list[tuple[str, str | None]] = []
        self.error: Exception | None = None

    async def get_gateway(self, namespace, credentials_secret=None):
        self.requests.append((namespace, credentials_secret))
        if self.error is not None:
            raise self.error
        return self.gateway


def make_user_record(
    name: str = "app-user",
    namespace: str = NAMESPACE,
    spec: dict[str, Any] | None = None,
    annotations: dict[str, str] | None = None,
    finalizers: list[str] | None = None,
    status: dict[str, Any] | None = None,
    deleted: bool = False,
    generation: int = 1,
) -> dict[str, Any]:
    """Build a raw DatabaseUser object as returned by the Kubernetes API."""
    base_spec = {
        "username": "app",
        "databaseName": "admin",
        "roles": [{"roleName": "readWrite", "databaseName": "app"}],
        "passwordSecretRef": {"name": "app-password"},
        "projectRef": {"name": "my-project"},
    }
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": f"uid-{name}",
        "generation": generation,
        "resourceVersion": "1",
        "annotations": dict(annotations or {}),
        "finalizers": list(finalizers or []),
    }
    if deleted:
        metadata["deletionTimestamp"] = "2025-06-01T11:00:00Z"
    record = {
        "apiVersion": f"{API_GROUP}/{API_VERSION}",
        "kind": DATABASE_USER_KIND,
        "metadata": metadata,
        "spec": {**base_spec, **(spec or {})},
    }
    if status is not None:
        record["status"] = status
    return record


def make_password_secret(
    name: str = "app-password",
    password: str = "s3cret",
    resource_version: str = "100",
) -> StoredSecret:
    return StoredSecret(
        name=name,
        namespace=NAMESPACE,
        data={"password": password},
        resource_version=resource_version,
    )


@pytest.fixture
def resource_store():
    store = FakeResourceStore()
    store.projects[(NAMESPACE, "my-project")] = PROJECT_ID
    return store


@pytest.fixture
def secret_store():
    secrets = FakeSecretStore()
    secrets.put(make_password_secret())
    return secrets


@pytest.fixture
def remote_gateway():
    gateway = FakeRemoteGateway()
    gateway.deployments[PROJECT_ID] = {"cluster0": True}
    return gateway


@pytest.fixture
def gateway_provider(remote_gateway):
    return FakeGatewayProvider(remote_gateway)


@pytest.fixture
def user_record():
    """Factory for DatabaseUser records."""
    return make_user_record
