"""
Tests package - Unit test suite for the database user operator.

Contains:
- unit/: Unit tests for individual components, with in-memory fakes for
  Kubernetes and the remote admin API in unit/conftest.py
- unit/services/: Reconciliation logic driven end to end through the fakes
"""
