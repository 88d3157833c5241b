"""
Pydantic models for DatabaseUser resources.

This module defines type-safe data models for the DatabaseUser custom
resource specification and status. Field names follow Python conventions
and map to the camelCase keys of the Kubernetes object through aliases.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ..constants import AUTH_TYPE_NONE, DEFAULT_DATABASE_NAME

ScopeType = Literal["CLUSTER", "DATA_LAKE"]

# Spec fields that only locate things and never reach the remote user
REFERENCE_FIELDS = frozenset(
    {"password_secret_ref", "project_ref", "external_project_ref", "connection_secret"}
)


class RoleSpec(BaseModel):
    """A role granted to the user on a database or collection."""

    model_config = {"populate_by_name": True}

    role_name: str = Field(..., alias="roleName", description="Name of the role")
    database_name: str = Field(
        ..., alias="databaseName", description="Database the role applies to"
    )
    collection_name: str = Field(
        "", alias="collectionName", description="Collection the role applies to"
    )

    def sort_key(self) -> tuple[str, str, str]:
        return (self.role_name, self.database_name, self.collection_name)


class ScopeSpec(BaseModel):
    """Restricts the user to a named deployment or data lake."""

    model_config = {"populate_by_name": True}

    name: str = Field(..., description="Name of the deployment or data lake")
    type: ScopeType = Field("CLUSTER", description="Kind of the scoped resource")

    def sort_key(self) -> tuple[str, str]:
        return (self.name, self.type)


class LabelSpec(BaseModel):
    """Free-form key/value label stored on the remote user."""

    key: str
    value: str


class PasswordSecretRef(BaseModel):
    """Reference to a secret in the same namespace holding a 'password' key."""

    name: str = Field(..., description="Name of the password secret")


class ProjectRef(BaseModel):
    """Reference to a DatabaseProject resource whose status carries the project ID."""

    name: str = Field(..., description="Name of the DatabaseProject resource")
    namespace: str | None = Field(
        None, description="Namespace of the DatabaseProject (defaults to the user's)"
    )


class ExternalProjectRef(BaseModel):
    """Direct reference to a remote project not managed by this operator."""

    model_config = {"populate_by_name": True}

    project_id: str = Field(..., alias="projectId", description="Remote project ID")


class ConnectionSecretRef(BaseModel):
    """Optional secret overriding the API credentials used for this user."""

    name: str


class DatabaseUserSpec(BaseModel):
    """Desired state of a database user in the remote project."""

    model_config = {"populate_by_name": True}

    username: str = Field(..., description="Name of the database user")
    database_name: str = Field(
        DEFAULT_DATABASE_NAME,
        alias="databaseName",
        description="Authentication database ($external for OIDC, AWS IAM and X.509)",
    )
    roles: list[RoleSpec] = Field(default_factory=list)
    scopes: list[ScopeSpec] = Field(default_factory=list)
    labels: list[LabelSpec] = Field(default_factory=list)
    description: str | None = Field(None, description="Free-form description")
    oidc_auth_type: Literal["NONE", "IDP_GROUP", "USER"] = Field(
        AUTH_TYPE_NONE, alias="oidcAuthType"
    )
    aws_iam_type: Literal["NONE", "USER", "ROLE"] = Field(
        AUTH_TYPE_NONE, alias="awsIamType"
    )
    x509_type: Literal["NONE", "MANAGED", "CUSTOMER"] = Field(
        AUTH_TYPE_NONE, alias="x509Type"
    )
    delete_after_date: str | None = Field(
        None,
        alias="deleteAfterDate",
        description="ISO8601 date after which the user is removed",
    )
    password_secret_ref: PasswordSecretRef | None = Field(
        None, alias="passwordSecretRef"
    )
    project_ref: ProjectRef | None = Field(None, alias="projectRef")
    external_project_ref: ExternalProjectRef | None = Field(
        None, alias="externalProjectRef"
    )
    connection_secret: ConnectionSecretRef | None = Field(
        None, alias="connectionSecret"
    )

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        if not v or not v.strip():
            raise ValueError("username must not be empty")
        return v

    @model_validator(mode="after")
    def validate_project_reference(self):
        if (self.project_ref is None) == (self.external_project_ref is None):
            raise ValueError(
                "exactly one of projectRef or externalProjectRef must be set"
            )
        return self

    @property
    def uses_password(self) -> bool:
        """True unless the user authenticates through OIDC, AWS IAM or X.509."""
        return (
            self.oidc_auth_type == AUTH_TYPE_NONE
            and self.aws_iam_type == AUTH_TYPE_NONE
            and self.x509_type == AUTH_TYPE_NONE
        )

    def cluster_scopes(self) -> list[str]:
        """Names of the deployments this user is restricted to."""
        return [scope.name for scope in self.scopes if scope.type == "CLUSTER"]

    def comparable(self) -> dict[str, Any]:
        """Fields that describe the remote user, for drift comparison."""
        return self.model_dump(by_alias=True, exclude=set(REFERENCE_FIELDS))


class Condition(BaseModel):
    """A Kubernetes-style status condition."""

    model_config = {"populate_by_name": True}

    type: str
    status: Literal["True", "False"]
    reason: str | None = None
    message: str | None = None
    last_transition_time: str = Field(..., alias="lastTransitionTime")


class DatabaseUserStatus(BaseModel):
    """Observed state written by the operator."""

    model_config = {"populate_by_name": True}

    conditions: list[Condition] = Field(default_factory=list)
    observed_generation: int | None = Field(None, alias="observedGeneration")
    username: str | None = Field(None, description="Last username applied remotely")
    password_version: str | None = Field(
        None,
        alias="passwordVersion",
        description="resourceVersion of the password secret last applied",
    )

    def to_status_dict(self) -> dict[str, Any]:
        """Render the status sub-document with Kubernetes field names."""
        return self.model_dump(by_alias=True, exclude_none=True)
