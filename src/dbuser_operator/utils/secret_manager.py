"""
Kubernetes secret access.

Reads password secrets and manages the connection secrets the operator
derives from database users. Secret payloads are exchanged as decoded text;
base64 handling stays in this module.
"""

import asyncio
import base64
import logging
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import KubernetesAPIError
from ..services.gateways import StoredSecret

logger = logging.getLogger(__name__)


def _encode(data: dict[str, str]) -> dict[str, str]:
    return {k: base64.b64encode(v.encode()).decode() for k, v in data.items()}


def _decode(data: dict[str, str] | None) -> dict[str, str]:
    return {k: base64.b64decode(v).decode() for k, v in (data or {}).items()}


def _owner_reference(ref: client.V1OwnerReference) -> dict[str, Any]:
    reference = {
        "apiVersion": ref.api_version,
        "kind": ref.kind,
        "name": ref.name,
        "uid": ref.uid,
        "blockOwnerDeletion": ref.block_owner_deletion,
    }
    return {k: v for k, v in reference.items() if v is not None}


def _api_error(action: str, e: ApiException) -> KubernetesAPIError:
    return KubernetesAPIError(
        f"Failed to {action}: {e.reason}",
        reason=e.reason,
        retryable=e.status is None or e.status >= 500 or e.status in (409, 429),
        status=e.status,
    )


class SecretManager:
    """Manages Kubernetes secrets through the CoreV1 API."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize secret manager.

        Args:
            k8s_client: Optional Kubernetes API client
        """
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    @staticmethod
    def to_stored(secret: client.V1Secret) -> StoredSecret:
        metadata = secret.metadata
        return StoredSecret(
            name=metadata.name,
            namespace=metadata.namespace,
            data=_decode(secret.data),
            labels=dict(metadata.labels or {}),
            owner_references=[
                _owner_reference(ref) for ref in metadata.owner_references or []
            ],
            resource_version=metadata.resource_version,
        )

    @staticmethod
    def to_body(secret: StoredSecret) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": secret.name,
            "namespace": secret.namespace,
            "labels": secret.labels,
        }
        if secret.owner_references:
            metadata["ownerReferences"] = secret.owner_references
        if secret.resource_version:
            metadata["resourceVersion"] = secret.resource_version
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": metadata,
            "type": "Opaque",
            "data": _encode(secret.data),
        }

    async def get(self, namespace: str, name: str) -> StoredSecret | None:
        """
        Retrieve a secret.

        Returns:
            The secret if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        try:
            secret = await asyncio.to_thread(
                self.v1.read_namespaced_secret, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(f"read secret {namespace}/{name}", e) from e
        return self.to_stored(secret)

    async def create(self, secret: StoredSecret) -> None:
        try:
            await asyncio.to_thread(
                self.v1.create_namespaced_secret,
                namespace=secret.namespace,
                body=self.to_body(secret),
            )
        except ApiException as e:
            raise _api_error(
                f"create secret {secret.namespace}/{secret.name}", e
            ) from e
        logger.debug(f"Created secret {secret.namespace}/{secret.name}")

    async def update(self, secret: StoredSecret) -> None:
        try:
            await asyncio.to_thread(
                self.v1.replace_namespaced_secret,
                name=secret.name,
                namespace=secret.namespace,
                body=self.to_body(secret),
            )
        except ApiException as e:
            raise _api_error(
                f"update secret {secret.namespace}/{secret.name}", e
            ) from e
        logger.debug(f"Updated secret {secret.namespace}/{secret.name}")

    async def delete(self, namespace: str, name: str) -> None:
        try:
            await asyncio.to_thread(
                self.v1.delete_namespaced_secret, name=name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Secret {namespace}/{name} already deleted")
                return
            raise _api_error(f"delete secret {namespace}/{name}", e) from e

    async def list(self, namespace: str, labels: dict[str, str]) -> list[StoredSecret]:
        selector = ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
        try:
            result = await asyncio.to_thread(
                self.v1.list_namespaced_secret,
                namespace=namespace,
                label_selector=selector,
            )
        except ApiException as e:
            raise _api_error(f"list secrets in {namespace}", e) from e
        return [self.to_stored(secret) for secret in result.items]
