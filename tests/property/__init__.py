# tests/property/__init__.py
"""Property-based tests for runwarden.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of. Reconciliation writes statuses
other tooling trusts, so the decision and resume rules are checked here.

Test categories:
- core/: Reconciliation decisions, resume plans, finished-node monotonicity
"""
