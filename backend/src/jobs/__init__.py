"""
Background jobs module.
"""

from src.jobs.reconcile_subscriptions import run_reconciliation

__all__ = [
    "run_reconciliation",
]
