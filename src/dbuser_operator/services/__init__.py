"""
Service layer for the database user operator.

This module provides the reconciliation driver and the DatabaseUser
strategy that hold the business logic, separated from the kopf handler layer.
"""

from .base_reconciler import ReconcileResult, ReconcileStrategy, ReconciliationDriver
from .database_user_reconciler import DatabaseUserReconciler

__all__ = [
    "DatabaseUserReconciler",
    "ReconcileResult",
    "ReconcileStrategy",
    "ReconciliationDriver",
]
