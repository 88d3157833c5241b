"""Data models for the database user operator."""

from .database_user import (
    Condition,
    DatabaseUserSpec,
    DatabaseUserStatus,
    RoleSpec,
    ScopeSpec,
)
from .remote_api import DeploymentConnection, RemoteDatabaseUser

__all__ = [
    "Condition",
    "DatabaseUserSpec",
    "DatabaseUserStatus",
    "DeploymentConnection",
    "RemoteDatabaseUser",
    "RoleSpec",
    "ScopeSpec",
]
