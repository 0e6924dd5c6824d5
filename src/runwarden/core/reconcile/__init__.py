"""Reconciliation: decide a run's status from remote evidence."""

from runwarden.core.reconcile.decision import Decision, decide
from runwarden.core.reconcile.reconciler import Reconciler, finished_count

__all__ = ["Decision", "Reconciler", "decide", "finished_count"]
