"""
Handlers package - Contains all Kopf event handlers of the operator.

This package organizes handlers by watched resource:
- database_user.py: DatabaseUser lifecycle and periodic re-sync
- password_secret.py: Password rotation of referenced secrets
"""
