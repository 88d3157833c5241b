"""
Remote administration API client.

This module provides a typed interface to the database service admin API
(v2) for the operations the operator needs: managing database users and
inspecting the deployments of a project.

The client handles:
- HTTP digest authentication with a public/private API key pair
- Rate limiting per project and globally
- Circuit breaking when the remote API keeps failing
- Mapping of HTTP failures onto the operator error hierarchy
"""

import logging
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import aiobreaker
import httpx

from ..constants import DEPLOYMENT_CHANGE_APPLIED
from ..errors import ConfigurationError, RemoteAPIError, RemoteNotFoundError
from ..models.remote_api import (
    ClusterDescription,
    ClusterStatus,
    DeploymentConnection,
    PaginatedClusters,
    RemoteDatabaseUser,
)
from ..observability.metrics import metrics_collector

if TYPE_CHECKING:
    from ..services.gateways import SecretStore
    from .circuit_breaker import RemoteAPICircuitBreaker
    from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

API_PREFIX = "/api/atlas/v2"
API_MEDIA_TYPE = "application/vnd.atlas.2023-01-01+json"
PAGE_SIZE = 500

# Keys of a credentials secret referenced through spec.connectionSecret
PUBLIC_KEY_FIELD = "publicApiKey"
PRIVATE_KEY_FIELD = "privateApiKey"


def is_client_error(error: Exception) -> bool:
    """Client errors say nothing about the health of the remote API."""
    return (
        isinstance(error, RemoteAPIError)
        and error.status_code is not None
        and 400 <= error.status_code < 500
        and error.status_code != 429
    )


def _segment(value: str) -> str:
    return quote(value, safe="")


class RemoteAdminClient:
    """
    High-level client for the remote administration API.

    Implements both the database user and the deployment gateways consumed
    by the reconciliation services.
    """

    def __init__(
        self,
        base_url: str,
        public_key: str,
        private_key: str,
        timeout: float = 30.0,
        rate_limiter: "RateLimiter | None" = None,
        circuit_breaker: "RemoteAPICircuitBreaker | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Base URL of the admin API, e.g. https://cloud.mongodb.com
            public_key: Public API key (digest username)
            private_key: Private API key (digest password)
            timeout: Request timeout in seconds
            rate_limiter: Optional rate limiter for API call throttling
            circuit_breaker: Optional circuit breaker shared across clients
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.public_key = public_key
        self.private_key = private_key
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=httpx.DigestAuth(self.public_key, self.private_key),
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                headers={"Accept": API_MEDIA_TYPE, "Content-Type": API_MEDIA_TYPE},
                follow_redirects=False,
                transport=self._transport,
            )
            logger.debug(f"Created httpx client for {self.base_url}")
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteAdminClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        project_id: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Make a request to the admin API.

        Args:
            method: HTTP method
            endpoint: Path below the API prefix
            project_id: Project the request addresses, for rate limiting
            json: JSON request body
            params: Query parameters

        Returns:
            Response with its body already buffered

        Raises:
            RemoteNotFoundError: On HTTP 404
            RemoteAPIError: On any other failure
        """
        if self.rate_limiter:
            try:
                await self.rate_limiter.acquire(project_id)
            except TimeoutError as e:
                raise RemoteAPIError(f"Rate limit timeout: {e}", status_code=429) from e

        if self.circuit_breaker is None:
            return await self._send(method, endpoint, json, params)

        try:
            result = await self.circuit_breaker.call(
                self._guarded_send, method, endpoint, json, params
            )
        except aiobreaker.CircuitBreakerError as e:
            logger.warning(f"Remote API circuit is open, not sending {method} {endpoint}")
            raise RemoteAPIError(f"Remote API unavailable: {e}") from e
        if isinstance(result, RemoteAPIError):
            raise result
        return result

    async def _guarded_send(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None,
        params: dict[str, Any] | None,
    ) -> httpx.Response | RemoteAPIError:
        """Send a request, returning client errors so the breaker ignores them."""
        try:
            return await self._send(method, endpoint, json, params)
        except RemoteAPIError as e:
            if is_client_error(e):
                return e
            raise

    async def _send(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        url = f"{API_PREFIX}/{endpoint.lstrip('/')}"
        start_time = time.time()
        status = "error"

        try:
            response = await self._get_client().request(
                method=method, url=url, json=json, params=params
            )
            status = str(response.status_code)
            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            response_body = e.response.text or "<no content>"
            if status_code == 404:
                raise RemoteNotFoundError(
                    f"{method} {url} not found", response_body=response_body
                ) from e

            error = RemoteAPIError(
                f"API request failed: {e}",
                status_code=status_code,
                response_body=response_body,
            )
            logger.error(
                f"Request failed: {method} {url} - {e}",
                extra={
                    "http_status": status_code,
                    "response_body": error.body_preview(1024),
                },
            )
            raise error from e

        except httpx.HTTPError as e:
            logger.error(f"Request failed: {method} {url} - {e}")
            raise RemoteAPIError(f"API request failed: {e}") from e

        finally:
            metrics_collector.record_remote_request(
                method, status, time.time() - start_time
            )

    # Database users

    def _user_path(self, project_id: str, database_name: str, username: str) -> str:
        return (
            f"groups/{_segment(project_id)}/databaseUsers/"
            f"{_segment(database_name)}/{_segment(username)}"
        )

    async def get_user(
        self, project_id: str, database_name: str, username: str
    ) -> RemoteDatabaseUser | None:
        """
        Get a database user.

        Returns:
            The user, or None if it does not exist

        Raises:
            RemoteAPIError: If the request fails for another reason
        """
        try:
            response = await self._make_request(
                "GET", self._user_path(project_id, database_name, username), project_id
            )
        except RemoteNotFoundError:
            return None
        return RemoteDatabaseUser.model_validate(response.json())

    async def create_user(self, user: RemoteDatabaseUser) -> RemoteDatabaseUser:
        logger.info(
            f"Creating database user {user.username}",
            extra={"project_id": user.group_id, "username": user.username},
        )
        response = await self._make_request(
            "POST",
            f"groups/{_segment(user.group_id)}/databaseUsers",
            user.group_id,
            json=user.to_payload(),
        )
        return RemoteDatabaseUser.model_validate(response.json())

    async def update_user(self, user: RemoteDatabaseUser) -> RemoteDatabaseUser:
        logger.info(
            f"Updating database user {user.username}",
            extra={"project_id": user.group_id, "username": user.username},
        )
        response = await self._make_request(
            "PATCH",
            self._user_path(user.group_id, user.database_name, user.username),
            user.group_id,
            json=user.to_payload(),
        )
        return RemoteDatabaseUser.model_validate(response.json())

    async def delete_user(
        self, project_id: str, database_name: str, username: str
    ) -> None:
        """
        Delete a database user.

        Raises:
            RemoteNotFoundError: If the user does not exist
            RemoteAPIError: If the request fails for another reason
        """
        await self._make_request(
            "DELETE", self._user_path(project_id, database_name, username), project_id
        )
        logger.info(
            f"Deleted database user {username}",
            extra={"project_id": project_id, "username": username},
        )

    # Deployments

    async def _list_paginated(
        self, endpoint: str, project_id: str
    ) -> list[ClusterDescription]:
        results: list[ClusterDescription] = []
        page = 1
        while True:
            response = await self._make_request(
                "GET",
                endpoint,
                project_id,
                params={"pageNum": page, "itemsPerPage": PAGE_SIZE},
            )
            batch = PaginatedClusters.model_validate(response.json())
            results.extend(batch.results)
            if not batch.results or len(results) >= batch.total_count:
                return results
            page += 1

    async def list_deployments(self, project_id: str) -> list[ClusterDescription]:
        """List dedicated and flex deployments of a project."""
        group = _segment(project_id)
        clusters = await self._list_paginated(f"groups/{group}/clusters", project_id)
        flex = await self._list_paginated(f"groups/{group}/flexClusters", project_id)
        return clusters + flex

    async def list_deployment_names(self, project_id: str) -> list[str]:
        return [deployment.name for deployment in await self.list_deployments(project_id)]

    async def cluster_exists(self, project_id: str, name: str) -> bool:
        group = _segment(project_id)
        for kind in ("clusters", "flexClusters"):
            try:
                await self._make_request(
                    "GET", f"groups/{group}/{kind}/{_segment(name)}", project_id
                )
                return True
            except RemoteNotFoundError:
                continue
            except RemoteAPIError as e:
                # Flex clusters are rejected by the dedicated cluster endpoint
                if e.status_code != 400:
                    raise
        return False

    async def is_ready(self, project_id: str, name: str) -> bool:
        response = await self._make_request(
            "GET",
            f"groups/{_segment(project_id)}/clusters/{_segment(name)}/status",
            project_id,
        )
        status = ClusterStatus.model_validate(response.json())
        return status.change_status == DEPLOYMENT_CHANGE_APPLIED

    async def list_connection_endpoints(
        self, project_id: str
    ) -> list[DeploymentConnection]:
        return [
            DeploymentConnection.from_cluster(deployment)
            for deployment in await self.list_deployments(project_id)
        ]


class RemoteAdminClientFactory:
    """
    Hands out remote clients per set of API credentials.

    Resources use the operator-wide API key unless they reference a
    credentials secret holding ``publicApiKey`` and ``privateApiKey``.
    """

    def __init__(
        self,
        base_url: str,
        public_key: str,
        private_key: str,
        secrets: "SecretStore",
        timeout: float = 30.0,
        rate_limiter: "RateLimiter | None" = None,
        circuit_breaker: "RemoteAPICircuitBreaker | None" = None,
    ):
        self.base_url = base_url
        self.public_key = public_key
        self.private_key = private_key
        self.secrets = secrets
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self._clients: dict[tuple[str, str], RemoteAdminClient] = {}

    async def _credentials(
        self, namespace: str, credentials_secret: str | None
    ) -> tuple[str, str]:
        if credentials_secret is None:
            if not self.public_key or not self.private_key:
                raise ConfigurationError("Remote API credentials are not configured")
            return self.public_key, self.private_key

        secret = await self.secrets.get(namespace, credentials_secret)
        if secret is None:
            raise ConfigurationError(
                f"Credentials secret {namespace}/{credentials_secret} not found"
            )
        public_key = secret.data.get(PUBLIC_KEY_FIELD)
        private_key = secret.data.get(PRIVATE_KEY_FIELD)
        if not public_key or not private_key:
            raise ConfigurationError(
                f"Credentials secret {namespace}/{credentials_secret} must contain "
                f"'{PUBLIC_KEY_FIELD}' and '{PRIVATE_KEY_FIELD}'"
            )
        return public_key, private_key

    async def get_gateway(
        self, namespace: str, credentials_secret: str | None = None
    ) -> RemoteAdminClient:
        credentials = await self._credentials(namespace, credentials_secret)
        client = self._clients.get(credentials)
        if client is None:
            client = RemoteAdminClient(
                self.base_url,
                *credentials,
                timeout=self.timeout,
                rate_limiter=self.rate_limiter,
                circuit_breaker=self.circuit_breaker,
            )
            self._clients[credentials] = client
        return client

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
