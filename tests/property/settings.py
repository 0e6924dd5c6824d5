# tests/property/settings.py
"""Standardized Hypothesis settings profiles for property tests.

Provides consistent test intensity across all property test modules.
Import these instead of using inline @settings(max_examples=...).

Usage:
    from tests.property.settings import STANDARD_SETTINGS

    @given(snapshot=snapshots())
    @STANDARD_SETTINGS
    def test_something(snapshot):
        ...

Tiers:
- DECISION_SETTINGS: 500 examples - reconciliation priority rules (status correctness)
- STANDARD_SETTINGS: 100 examples - Regular property tests
- SLOW_SETTINGS: 50 examples - I/O bound tests (ledger database)
- QUICK_SETTINGS: 20 examples - Fast validation tests
"""

from hypothesis import settings

# The decision table is pure and cheap; explore it hard
DECISION_SETTINGS = settings(max_examples=500)

# Standard property tests - good balance of coverage and speed
STANDARD_SETTINGS = settings(max_examples=100)

# I/O-bound tests - real ledger database
SLOW_SETTINGS = settings(max_examples=50)

# Quick validation tests
QUICK_SETTINGS = settings(max_examples=20)
