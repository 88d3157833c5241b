"""
Constants used throughout the database user operator.

This module defines all constant values used by the operator including:
- Custom resource coordinates
- Finalizer names for cleanup coordination
- Resource labels and annotations
- Status condition types and user-facing messages
"""

# Custom resource coordinates
API_GROUP = "dbaas.mdvr.nl"
API_VERSION = "v1"
DATABASE_USER_PLURAL = "databaseusers"
DATABASE_USER_KIND = "DatabaseUser"
DATABASE_PROJECT_PLURAL = "databaseprojects"

# Finalizer blocking deletion until the remote user is cleaned up
DATABASE_USER_FINALIZER = "dbaas.mdvr.nl/finalizer"

# Annotation constants for configuration and metadata
RECONCILIATION_POLICY_ANNOTATION = "dbaas.mdvr.nl/reconciliation-policy"
RECONCILIATION_POLICY_SKIP = "skip"
RESOURCE_POLICY_ANNOTATION = "dbaas.mdvr.nl/resource-policy"
RESOURCE_POLICY_KEEP = "keep"
RESOURCE_POLICY_DELETE = "delete"
RESOURCE_VERSION_ANNOTATION = "dbaas.mdvr.nl/resource-version"
LAST_APPLIED_CONFIGURATION_ANNOTATION = "dbaas.mdvr.nl/last-applied-configuration"
PASSWORD_SECRET_VERSION_ANNOTATION = "dbaas.mdvr.nl/password-secret-version"

# Label constants for connection secrets
OPERATOR_LABEL_KEY = "dbaas.mdvr.nl/managed-by"
OPERATOR_LABEL_VALUE = "dbuser-operator"
PROJECT_ID_LABEL = "dbaas.mdvr.nl/project-id"
CLUSTER_NAME_LABEL = "dbaas.mdvr.nl/cluster-name"
SECRET_TYPE_LABEL = "dbaas.mdvr.nl/type"
SECRET_TYPE_CREDENTIALS = "credentials"
# Password secrets carrying this label are watched for rotation
WATCH_SECRET_LABEL = "dbaas.mdvr.nl/watch"

# Connection secret data keys
USERNAME_KEY = "username"
PASSWORD_KEY = "password"
STANDARD_KEY = "connectionStringStandard"
STANDARD_SRV_KEY = "connectionStringStandardSrv"
PRIVATE_KEY = "connectionStringPrivate"
PRIVATE_SRV_KEY = "connectionStringPrivateSrv"
PRIVATE_SHARD_KEY = "connectionStringPrivateShard"

# Condition type constants
CONDITION_READY = "Ready"
CONDITION_DATABASE_USER_READY = "DatabaseUserReady"
CONDITION_RESOURCE_VERSION = "ResourceVersionStatus"
CONDITION_VALIDATION_SUCCEEDED = "ValidationSucceeded"

# Condition status constants
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

# Remote deployment readiness marker
DEPLOYMENT_CHANGE_APPLIED = "APPLIED"

# Retry configuration for best-effort cleanup
OLD_USER_DELETE_ATTEMPTS = 3

# Default values
DEFAULT_DATABASE_NAME = "admin"
EXTERNAL_DATABASE_NAME = "$external"
AUTH_TYPE_NONE = "NONE"

# User-facing messages
MESSAGE_DEPLOYMENTS_SCHEDULED = "Clusters are scheduled to handle database users updates"
MESSAGE_DEPLOYMENTS_PROGRESS = (
    "{ready} out of {total} deployments have applied database user changes"
)
MESSAGE_WAITING_FOR_CONNECTIONS = "Waiting for deployments to get created/updated"
MESSAGE_EXPIRED = "an expired user cannot be managed"
MESSAGE_RELEASED = "database user is no longer managed by the operator"
ERROR_SCOPES_INVALID = (
    '"scopes" field refer to one or more deployments that don\'t exist'
)
ERROR_PASSWORD_SECRET_NOT_FOUND = "secret {} not found"
ERROR_PASSWORD_FIELD_MISSING = "secret {} is invalid: it doesn't contain 'password' field"
ERROR_PASSWORD_FIELD_EMPTY = "secret {} is invalid: the 'password' field is empty"
ERROR_VERSION_MISMATCH = (
    "version of the resource '{}' is higher than the operator version '{}'"
)
