"""
Connection secrets derived from database users.

One secret is kept per (project, deployment, username) holding the user's
credentials and every connection string of the deployment with those
credentials embedded. Secrets are labelled with their project and
deployment so stale ones can be found and removed again.
"""

import logging
import re
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

from ..constants import (
    API_GROUP,
    API_VERSION,
    CLUSTER_NAME_LABEL,
    DATABASE_USER_KIND,
    OPERATOR_LABEL_KEY,
    OPERATOR_LABEL_VALUE,
    PASSWORD_KEY,
    PRIVATE_KEY,
    PRIVATE_SHARD_KEY,
    PRIVATE_SRV_KEY,
    PROJECT_ID_LABEL,
    SECRET_TYPE_CREDENTIALS,
    SECRET_TYPE_LABEL,
    STANDARD_KEY,
    STANDARD_SRV_KEY,
    USERNAME_KEY,
)
from ..models.remote_api import DeploymentConnection, PrivateConnection
from ..observability.metrics import metrics_collector
from .gateways import SecretStore, StoredSecret

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9.-]")


def normalize_name_part(value: str) -> str:
    """Lower-case a value and replace characters invalid in object names with '-'."""
    return _INVALID_NAME_CHARS.sub("-", value.lower())


def connection_secret_name(project: str, deployment: str, username: str) -> str:
    return "-".join(
        normalize_name_part(part) for part in (project, deployment, username)
    )


def add_credentials(url: str | None, username: str, password: str) -> str:
    """Insert escaped ``user:password@`` into the authority of a connection URL."""
    if not url:
        return ""
    parts = urlsplit(url)
    host = parts.netloc.rpartition("@")[2]
    userinfo = quote(username, safe="")
    if password:
        userinfo = f"{userinfo}:{quote(password, safe='')}"
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{host}"))


def build_secret_data(
    username: str, password: str, connection: DeploymentConnection
) -> dict[str, str]:
    """Assemble the secret payload for one deployment."""
    data = {
        USERNAME_KEY: username,
        PASSWORD_KEY: password,
        STANDARD_KEY: add_credentials(connection.url, username, password),
        STANDARD_SRV_KEY: add_credentials(connection.srv_url, username, password),
        PRIVATE_KEY: "",
        PRIVATE_SRV_KEY: "",
    }
    # Peering URLs come first, then each private endpoint under its own suffix
    private = list(connection.private_endpoints)
    if connection.private_url:
        private.insert(
            0,
            PrivateConnection(
                url=connection.private_url, server_url=connection.srv_private_url
            ),
        )
    for i, endpoint in enumerate(private):
        suffix = str(i) if i else ""
        data[PRIVATE_KEY + suffix] = add_credentials(endpoint.url, username, password)
        data[PRIVATE_SRV_KEY + suffix] = add_credentials(
            endpoint.server_url, username, password
        )
        data[PRIVATE_SHARD_KEY + suffix] = add_credentials(
            endpoint.shard_url, username, password
        )
    return data


def secret_labels(project_id: str, deployment: str) -> dict[str, str]:
    return {
        SECRET_TYPE_LABEL: SECRET_TYPE_CREDENTIALS,
        PROJECT_ID_LABEL: project_id,
        CLUSTER_NAME_LABEL: deployment,
        OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE,
    }


def owner_reference(owner: dict[str, Any]) -> dict[str, Any]:
    """Owner reference pointing at a DatabaseUser object."""
    metadata = owner.get("metadata", {})
    return {
        "apiVersion": f"{API_GROUP}/{API_VERSION}",
        "kind": DATABASE_USER_KIND,
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "blockOwnerDeletion": False,
    }


class ConnectionSecretMaterializer:
    """Creates or refreshes connection secrets for a user."""

    def __init__(self, secrets: SecretStore):
        self.secrets = secrets

    async def materialize(
        self,
        owner: dict[str, Any],
        project_id: str,
        username: str,
        password: str,
        connections: list[DeploymentConnection],
    ) -> list[str]:
        """
        Ensure one secret per deployment exists with up to date content.

        Args:
            owner: DatabaseUser object the secrets belong to
            project_id: Remote project ID
            username: Database username
            password: Current password, empty for passwordless users
            connections: Connection URLs of the deployments in scope; those
                without connection strings yet are skipped

        Returns:
            Names of the secrets that now describe the user
        """
        namespace = owner["metadata"]["namespace"]
        names = []
        written = 0

        for connection in connections:
            if not connection.has_connection_strings:
                logger.debug(
                    f"Deployment {connection.name} has no connection strings yet, "
                    "not creating a connection secret",
                    extra={"deployment": connection.name},
                )
                continue
            name = connection_secret_name(project_id, connection.name, username)
            desired = StoredSecret(
                name=name,
                namespace=namespace,
                data=build_secret_data(username, password, connection),
                labels=secret_labels(project_id, connection.name),
                owner_references=[owner_reference(owner)],
            )
            existing = await self.secrets.get(namespace, name)
            if existing is None:
                await self.secrets.create(desired)
                logger.info(
                    f"Created connection secret {namespace}/{name}",
                    extra={"secret_name": name, "deployment": connection.name},
                )
                written += 1
            elif existing.data != desired.data or any(
                existing.labels.get(k) != v for k, v in desired.labels.items()
            ):
                desired.labels = {**existing.labels, **desired.labels}
                desired.resource_version = existing.resource_version
                await self.secrets.update(desired)
                logger.info(
                    f"Updated connection secret {namespace}/{name}",
                    extra={"secret_name": name, "deployment": connection.name},
                )
                written += 1
            names.append(name)

        metrics_collector.record_connection_secrets(namespace, "materialized", written)
        return names


class ConnectionSecretReaper:
    """Removes connection secrets that no longer describe a live user/deployment pair."""

    def __init__(self, secrets: SecretStore):
        self.secrets = secrets

    async def _project_secrets(
        self, namespace: str, project_id: str
    ) -> list[StoredSecret]:
        return await self.secrets.list(
            namespace,
            {SECRET_TYPE_LABEL: SECRET_TYPE_CREDENTIALS, PROJECT_ID_LABEL: project_id},
        )

    async def _delete_all(self, namespace: str, secrets: list[StoredSecret]) -> int:
        for secret in secrets:
            await self.secrets.delete(namespace, secret.name)
            logger.info(
                f"Deleted connection secret {namespace}/{secret.name}",
                extra={"secret_name": secret.name},
            )
        metrics_collector.record_connection_secrets(namespace, "reaped", len(secrets))
        return len(secrets)

    async def reap_user(self, namespace: str, project_id: str, username: str) -> int:
        """Delete every connection secret of a project addressed to ``username``."""
        secrets = await self._project_secrets(namespace, project_id)
        return await self._delete_all(
            namespace, [s for s in secrets if s.data.get(USERNAME_KEY) == username]
        )

    async def reap_orphans(
        self, namespace: str, project_id: str, existing_deployments: list[str]
    ) -> int:
        """Delete connection secrets whose deployment no longer exists."""
        existing = set(existing_deployments)
        secrets = await self._project_secrets(namespace, project_id)
        return await self._delete_all(
            namespace,
            [s for s in secrets if s.labels.get(CLUSTER_NAME_LABEL) not in existing],
        )

    async def reap_out_of_scope(
        self, namespace: str, project_id: str, username: str, in_scope: list[str]
    ) -> int:
        """Delete the user's secrets for deployments it is no longer scoped to."""
        scoped = set(in_scope)
        secrets = await self._project_secrets(namespace, project_id)
        return await self._delete_all(
            namespace,
            [
                s
                for s in secrets
                if s.data.get(USERNAME_KEY) == username
                and s.labels.get(CLUSTER_NAME_LABEL) not in scoped
            ],
        )
