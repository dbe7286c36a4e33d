"""
Engine: ejecución del plan (Reconciler) y reporte de resultados (StateReport).
"""

from reposync.core.engine.reconciler import Reconciler, ResourcePhase, RetryPolicy
from reposync.core.engine.report import RunOutcome, StateReport

__all__ = ["Reconciler", "ResourcePhase", "RetryPolicy", "RunOutcome", "StateReport"]
