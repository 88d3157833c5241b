"""
Pydantic models for the remote administration API payloads.

Only the fields the operator reads or writes are modelled; unknown fields
returned by the API are ignored.
"""

from typing import Any

from pydantic import BaseModel, Field

from .database_user import DatabaseUserSpec, LabelSpec, RoleSpec, ScopeSpec


class RemoteRole(BaseModel):
    model_config = {"populate_by_name": True}

    role_name: str = Field(..., alias="roleName")
    database_name: str = Field(..., alias="databaseName")
    collection_name: str | None = Field(None, alias="collectionName")


class RemoteScope(BaseModel):
    name: str
    type: str = "CLUSTER"


class RemoteLabel(BaseModel):
    key: str
    value: str


class RemoteDatabaseUser(BaseModel):
    """A database user as stored by the remote API."""

    model_config = {"populate_by_name": True}

    group_id: str = Field(..., alias="groupId", description="Remote project ID")
    username: str
    database_name: str = Field(..., alias="databaseName")
    password: str | None = Field(None, description="Only sent, never returned")
    roles: list[RemoteRole] = Field(default_factory=list)
    scopes: list[RemoteScope] = Field(default_factory=list)
    labels: list[RemoteLabel] = Field(default_factory=list)
    description: str | None = None
    oidc_auth_type: str = Field("NONE", alias="oidcAuthType")
    aws_iam_type: str = Field("NONE", alias="awsIAMType")
    x509_type: str = Field("NONE", alias="x509Type")
    delete_after_date: str | None = Field(None, alias="deleteAfterDate")

    @classmethod
    def from_spec(
        cls, spec: DatabaseUserSpec, project_id: str, password: str | None = None
    ) -> "RemoteDatabaseUser":
        """Build the API payload for a desired user."""
        return cls(
            group_id=project_id,
            username=spec.username,
            database_name=spec.database_name,
            password=password or None,
            roles=[
                RemoteRole(
                    role_name=role.role_name,
                    database_name=role.database_name,
                    collection_name=role.collection_name or None,
                )
                for role in spec.roles
            ],
            scopes=[RemoteScope(name=s.name, type=s.type) for s in spec.scopes],
            labels=[
                RemoteLabel(key=label.key, value=label.value) for label in spec.labels
            ],
            description=spec.description,
            oidc_auth_type=spec.oidc_auth_type,
            aws_iam_type=spec.aws_iam_type,
            x509_type=spec.x509_type,
            delete_after_date=spec.delete_after_date,
        )

    def to_spec(self) -> DatabaseUserSpec:
        """
        Convert back to a DatabaseUserSpec for drift comparison.

        The project is carried as an external reference since the remote
        side has no notion of the local DatabaseProject resource.
        """
        return DatabaseUserSpec(
            username=self.username,
            database_name=self.database_name,
            roles=[
                RoleSpec(
                    role_name=role.role_name,
                    database_name=role.database_name,
                    collection_name=role.collection_name or "",
                )
                for role in self.roles
            ],
            scopes=[ScopeSpec(name=s.name, type=s.type) for s in self.scopes],
            labels=[
                LabelSpec(key=label.key, value=label.value) for label in self.labels
            ],
            description=self.description,
            oidc_auth_type=self.oidc_auth_type,
            aws_iam_type=self.aws_iam_type,
            x509_type=self.x509_type,
            delete_after_date=self.delete_after_date,
            external_project_ref={"projectId": self.group_id},
        )

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON body for create and update requests."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PrivateEndpoint(BaseModel):
    model_config = {"populate_by_name": True}

    connection_string: str | None = Field(None, alias="connectionString")
    srv_connection_string: str | None = Field(None, alias="srvConnectionString")
    srv_shard_optimized_connection_string: str | None = Field(
        None, alias="srvShardOptimizedConnectionString"
    )


class ConnectionStrings(BaseModel):
    model_config = {"populate_by_name": True}

    standard: str | None = None
    standard_srv: str | None = Field(None, alias="standardSrv")
    private: str | None = None
    private_srv: str | None = Field(None, alias="privateSrv")
    private_endpoint: list[PrivateEndpoint] = Field(
        default_factory=list, alias="privateEndpoint"
    )


class ClusterDescription(BaseModel):
    """A deployment (dedicated or flex cluster) in a remote project."""

    model_config = {"populate_by_name": True}

    name: str
    state_name: str | None = Field(None, alias="stateName")
    connection_strings: ConnectionStrings = Field(
        default_factory=ConnectionStrings, alias="connectionStrings"
    )


class ClusterStatus(BaseModel):
    model_config = {"populate_by_name": True}

    change_status: str = Field(..., alias="changeStatus")


class PaginatedClusters(BaseModel):
    model_config = {"populate_by_name": True}

    results: list[ClusterDescription] = Field(default_factory=list)
    total_count: int = Field(0, alias="totalCount")


class PrivateConnection(BaseModel):
    """Private endpoint URLs of a deployment."""

    url: str | None = None
    server_url: str | None = None
    shard_url: str | None = None


class DeploymentConnection(BaseModel):
    """Connection URLs of a deployment, used to materialize connection secrets."""

    name: str
    url: str | None = None
    srv_url: str | None = None
    private_url: str | None = None
    srv_private_url: str | None = None
    private_endpoints: list[PrivateConnection] = Field(default_factory=list)

    @property
    def has_connection_strings(self) -> bool:
        """Deployments report empty strings until they have been created."""
        return bool(self.srv_url)

    @classmethod
    def from_cluster(cls, cluster: ClusterDescription) -> "DeploymentConnection":
        strings = cluster.connection_strings
        return cls(
            name=cluster.name,
            url=strings.standard,
            srv_url=strings.standard_srv,
            private_url=strings.private,
            srv_private_url=strings.private_srv,
            private_endpoints=[
                PrivateConnection(
                    url=pe.connection_string,
                    server_url=pe.srv_connection_string,
                    shard_url=pe.srv_shard_optimized_connection_string,
                )
                for pe in strings.private_endpoint
            ],
        )
