"""
Runwarden: run state reconciliation and resume for remote, crash-prone VMs.

Determines what actually happened to long-running remote work from partial
evidence, keeps a host-side ledger of it, and resumes failed runs without
redoing finished work.
"""

__version__ = "0.1.0"
