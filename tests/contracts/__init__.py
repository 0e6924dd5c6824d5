"""Tests for contracts package.

Contract tests verify the invariants the shared dataclasses enforce on
construction, and that the package stays importable without runwarden.core.
"""
