"""
StateReport: resumen de solo lectura de una ejecución.

Qué cambió, qué ya estaba convergido, qué se omitió y qué falló, en orden de plan.
No se modifica después de construido.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from reposync.core.infra.contracts import ExecutionResult, Outcome


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


EXIT_SUCCESS = 0
EXIT_PARTIAL = 1
EXIT_PLAN_FAILED = 2
EXIT_FAILED = 3


@dataclass(frozen=True)
class StateReport:
    target: str
    results: Tuple[ExecutionResult, ...]
    plan: Tuple[str, ...]
    duration: float
    dry_run: bool = False
    plan_error: Optional[str] = None
    plan_error_type: Optional[str] = None
    aborted: Optional[str] = None
    cancelled: bool = False

    @property
    def outcome(self) -> RunOutcome:
        if self.plan_error or self.aborted:
            return RunOutcome.FAILED
        succeeded = [r for r in self.results if r.succeeded]
        if len(succeeded) == len(self.results):
            return RunOutcome.SUCCESS
        if succeeded:
            return RunOutcome.PARTIAL
        # Cancelar sin que nada haya fallado deja el trabajo a medias, no fallido
        if self.cancelled and not self.by_outcome(Outcome.FAILED):
            return RunOutcome.PARTIAL
        return RunOutcome.FAILED

    @property
    def exit_code(self) -> int:
        if self.plan_error:
            return EXIT_PLAN_FAILED
        return {
            RunOutcome.SUCCESS: EXIT_SUCCESS,
            RunOutcome.PARTIAL: EXIT_PARTIAL,
            RunOutcome.FAILED: EXIT_FAILED,
        }[self.outcome]

    def result(self, rid: str) -> Optional[ExecutionResult]:
        for r in self.results:
            if r.resource_id == rid:
                return r
        return None

    def by_outcome(self, outcome: Outcome) -> List[str]:
        return [r.resource_id for r in self.results if r.outcome == outcome]

    def counts(self) -> Dict[str, int]:
        counts = {o.value: 0 for o in Outcome}
        for r in self.results:
            counts[r.outcome.value] += 1
        return counts

    @property
    def pending_changes(self) -> int:
        """Operaciones que un dry-run aplicaría (0 ⇒ destino convergido)."""
        return sum(len(r.change_set) for r in self.results if r.outcome == Outcome.PENDING and r.change_set)

    @property
    def applied_changes(self) -> int:
        return sum(len(r.change_set) for r in self.results if r.outcome == Outcome.APPLIED and r.change_set)

    @property
    def change_log(self) -> List[str]:
        """Una línea por ChangeSet no vacío (valores sensibles enmascarados)."""
        lines: List[str] = []
        for r in self.results:
            if r.change_set and r.outcome in (Outcome.APPLIED, Outcome.PENDING, Outcome.FAILED):
                lines.append(f"{r.resource_id} [{r.outcome.value}]: {r.change_set.summary()}")
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "dry_run": self.dry_run,
            "duration": round(self.duration, 3),
            "plan": list(self.plan),
            "plan_error": self.plan_error,
            "aborted": self.aborted,
            "cancelled": self.cancelled,
            "results": [r.to_dict() for r in self.results],
            "change_log": self.change_log,
        }
