"""
Password secret handlers - Propagates password rotation to DatabaseUsers.

Secrets labelled ``dbaas.mdvr.nl/watch=true`` are watched. When one changes,
every DatabaseUser in the same namespace referencing it is annotated with the
secret's new resourceVersion, which kopf sees as an update of the user and
reconciles it with the new password.
"""

import logging
from typing import Any

import kopf

from dbuser_operator.constants import (
    PASSWORD_SECRET_VERSION_ANNOTATION,
    WATCH_SECRET_LABEL,
)
from dbuser_operator.errors import ResourceNotFoundError

logger = logging.getLogger(__name__)


@kopf.on.update("", "v1", "secrets", labels={WATCH_SECRET_LABEL: "true"})
async def password_secret_changed(
    name: str,
    namespace: str,
    meta: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Mark the DatabaseUsers using a rotated password secret for reconciliation.

    Args:
        name: Name of the changed secret
        namespace: Namespace of the secret
        meta: Secret metadata
        memo: Operator memo holding the DatabaseUser store
    """
    resource_version = meta.get("resourceVersion")
    if not resource_version:
        return

    users = await memo.store.list_referencing_secret(namespace, name)
    if not users:
        logger.debug(f"No DatabaseUser references secret {namespace}/{name}")
        return

    for key in users:
        try:
            await memo.store.set_annotation(
                key, PASSWORD_SECRET_VERSION_ANNOTATION, resource_version
            )
        except ResourceNotFoundError:
            logger.debug(f"DatabaseUser {key} disappeared before it could be marked")
            continue
        logger.info(
            f"Password secret {namespace}/{name} changed, marked DatabaseUser {key}"
        )
