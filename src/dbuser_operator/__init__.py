"""
Database User Operator - A GitOps-compatible Kubernetes operator for managed database users.

This operator keeps the database users of a remote database-as-a-service
project in sync with DatabaseUser custom resources:
- Declarative user lifecycle (create, update, rename, delete, expiry)
- Drift detection against the remote account on every reconcile
- Per-deployment connection secrets derived from each user
"""

__version__ = "0.1.0"
