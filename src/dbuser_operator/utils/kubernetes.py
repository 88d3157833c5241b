"""
Kubernetes utilities for the database user operator.

This module provides the Kubernetes client bootstrap and the store through
which the reconciliation services read and patch DatabaseUser resources
and resolve DatabaseProject references.
"""

import asyncio
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..constants import (
    API_GROUP,
    API_VERSION,
    DATABASE_PROJECT_PLURAL,
    DATABASE_USER_PLURAL,
)
from ..errors import ConfigurationError, KubernetesAPIError, ResourceNotFoundError
from ..services.gateways import ResourceKey

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries the in-cluster configuration first and falls back to the local
    kubeconfig for development.

    Returns:
        Configured Kubernetes API client
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def _api_error(action: str, e: ApiException) -> KubernetesAPIError:
    if e.status == 404:
        return ResourceNotFoundError(f"Failed to {action}: not found")
    return KubernetesAPIError(
        f"Failed to {action}: {e.reason}",
        reason=e.reason,
        retryable=e.status is None or e.status >= 500 or e.status in (409, 429),
        status=e.status,
    )


class DatabaseUserStore:
    """Reads and patches DatabaseUser resources through the custom objects API."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        self.k8s_client = k8s_client
        self._custom_api: client.CustomObjectsApi | None = None

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        """Get CustomObjectsApi client."""
        if self._custom_api is None:
            if self.k8s_client:
                self._custom_api = client.CustomObjectsApi(self.k8s_client)
            else:
                self._custom_api = client.CustomObjectsApi()
        return self._custom_api

    async def _get_object(
        self, plural: str, namespace: str, name: str
    ) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(
                self.custom_api.get_namespaced_custom_object,
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=plural,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(f"read {plural} {namespace}/{name}", e) from e

    async def _patch(self, key: ResourceKey, body: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(
                self.custom_api.patch_namespaced_custom_object,
                group=API_GROUP,
                version=API_VERSION,
                namespace=key.namespace,
                plural=DATABASE_USER_PLURAL,
                name=key.name,
                body=body,
            )
        except ApiException as e:
            raise _api_error(f"patch {DATABASE_USER_PLURAL} {key}", e) from e

    async def get(self, key: ResourceKey) -> dict[str, Any] | None:
        return await self._get_object(DATABASE_USER_PLURAL, key.namespace, key.name)

    async def add_finalizer(self, key: ResourceKey, finalizer: str) -> None:
        record = await self.get(key)
        if record is None:
            raise ResourceNotFoundError(f"{DATABASE_USER_PLURAL} {key} not found")
        metadata = record.get("metadata", {})
        finalizers = list(metadata.get("finalizers") or [])
        if finalizer in finalizers:
            return
        await self._patch(
            key,
            {
                "metadata": {
                    "finalizers": [*finalizers, finalizer],
                    "resourceVersion": metadata.get("resourceVersion"),
                }
            },
        )
        logger.debug(f"Added finalizer {finalizer} to {key}")

    async def remove_finalizer(self, key: ResourceKey, finalizer: str) -> None:
        record = await self.get(key)
        if record is None:
            return
        metadata = record.get("metadata", {})
        finalizers = list(metadata.get("finalizers") or [])
        if finalizer not in finalizers:
            return
        try:
            await self._patch(
                key,
                {
                    "metadata": {
                        "finalizers": [f for f in finalizers if f != finalizer],
                        "resourceVersion": metadata.get("resourceVersion"),
                    }
                },
            )
        except ResourceNotFoundError:
            return
        logger.debug(f"Removed finalizer {finalizer} from {key}")

    async def set_annotation(self, key: ResourceKey, name: str, value: str) -> None:
        await self._patch(key, {"metadata": {"annotations": {name: value}}})

    async def replace_status(self, key: ResourceKey, status: dict[str, Any]) -> None:
        """
        Replace the status sub-document.

        Keys with a None value are removed, so the stored status ends up
        exactly equal to ``status``.
        """
        try:
            await asyncio.to_thread(
                self.custom_api.patch_namespaced_custom_object_status,
                group=API_GROUP,
                version=API_VERSION,
                namespace=key.namespace,
                plural=DATABASE_USER_PLURAL,
                name=key.name,
                body={"status": status},
            )
        except ApiException as e:
            raise _api_error(f"write status of {key}", e) from e

    async def get_project_id(self, name: str, namespace: str) -> str:
        """
        Resolve a DatabaseProject to its remote project ID.

        Raises:
            ResourceNotFoundError: If the DatabaseProject does not exist
            ConfigurationError: If the project has not been provisioned yet
        """
        project = await self._get_object(DATABASE_PROJECT_PLURAL, namespace, name)
        if project is None:
            raise ResourceNotFoundError(f"DatabaseProject {namespace}/{name} not found")
        project_id = (project.get("status") or {}).get("id")
        if not project_id:
            raise ConfigurationError(
                f"DatabaseProject {namespace}/{name} has no project ID yet",
                retryable=True,
            )
        return project_id

    async def list_referencing_secret(self, namespace: str, secret_name: str) -> list[ResourceKey]:
        """Find the DatabaseUsers in a namespace whose password secret is ``secret_name``."""
        try:
            result = await asyncio.to_thread(
                self.custom_api.list_namespaced_custom_object,
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=DATABASE_USER_PLURAL,
            )
        except ApiException as e:
            raise _api_error(f"list {DATABASE_USER_PLURAL} in {namespace}", e) from e

        keys = []
        for item in result.get("items", []):
            ref = (item.get("spec") or {}).get("passwordSecretRef") or {}
            if ref.get("name") == secret_name:
                keys.append(ResourceKey(namespace, item["metadata"]["name"]))
        return keys
