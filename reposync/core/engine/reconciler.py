"""
Reconciler / Executor: recorre el plan e invoca los adapters.

Máquina de estados por recurso:
    Pending → Reading → Diffing → (Converged | Applying → (Applied | Failed))
y Skipped para los que nunca se intentan (dependencia fallida, cancelación, abort).

Ejecución secuencial por destino: el orden correcto importa más que el throughput,
y así los recursos de camino de acceso (sshd, firewall) nunca se solapan.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, TypeVar

from reposync.core.errors import (
    AdapterInvariantViolation,
    ApplyFailed,
    CycleDetected,
    ResourceError,
    TargetUnreachable,
    ValidationError,
)
from reposync.core.engine.report import StateReport
from reposync.core.infra.contracts import ExecutionResult, Outcome, ResourceAdapter, TargetHandle
from reposync.core.project.models import ResourceSpec
from reposync.core.project.planner import Plan, Planner
from reposync.core.project.validator import validate_specs
from reposync.core.runtime.secrets import SecretStore, redact, redacting, sensitive_attributes
from reposync.core.runtime.state import MASK, AttributeChange, ChangeSet

logger = logging.getLogger("reposync.engine")

T = TypeVar("T")


class ResourcePhase(str, Enum):
    PENDING = "pending"
    READING = "reading"
    DIFFING = "diffing"
    CONVERGED = "converged"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RetryPolicy:
    """Reintentos acotados ante TargetUnreachable, con backoff exponencial con tope."""
    retries: int = 2
    base: float = 1.0
    cap: float = 30.0

    def delay(self, attempt: int) -> float:
        return min(self.cap, self.base * (2 ** (attempt - 1)))


class Reconciler:
    """
    Dueño exclusivo del TargetHandle durante la ejecución; los adapters lo
    reciben prestado en cada llamada.
    """

    def __init__(
        self,
        target: TargetHandle,
        adapters: Mapping[str, ResourceAdapter],
        secrets: Optional[SecretStore] = None,
        retry: Optional[RetryPolicy] = None,
        verify_after_apply: bool = True,
        planner: Optional[Planner] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        observer: Optional[Callable[[str, ResourcePhase], None]] = None,
    ):
        self.target = target
        self.adapters = adapters
        self.secrets = secrets or SecretStore()
        self.retry = retry or RetryPolicy()
        self.verify_after_apply = verify_after_apply
        self.planner = planner or Planner()
        self._sleep = sleep
        self._clock = clock
        self._observer = observer
        self.phases: Dict[str, ResourcePhase] = {}

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    def reconcile(
        self,
        specs: Sequence[ResourceSpec],
        dry_run: bool = False,
        tags: Optional[List[str]] = None,
        skip_tags: Optional[List[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> StateReport:
        """Valida, planifica y ejecuta. Los errores pre-flight no tocan el destino."""
        started = self._clock()
        try:
            validate_specs(specs, self.adapters, self.secrets)
            plan = self.planner.plan(specs, tags=tags, skip_tags=skip_tags)
        except (ValidationError, CycleDetected) as e:
            logger.error("%s: plan rechazado: %s", self.target.name, e)
            return StateReport(
                target=self.target.name,
                results=(),
                plan=(),
                duration=self._clock() - started,
                dry_run=dry_run,
                plan_error=str(e),
                plan_error_type=type(e).__name__,
            )
        return self.execute(plan, dry_run=dry_run, cancel=cancel, started=started)

    def execute(
        self,
        plan: Plan,
        dry_run: bool = False,
        cancel: Optional[threading.Event] = None,
        started: Optional[float] = None,
    ) -> StateReport:
        started = self._clock() if started is None else started
        self.phases = {rid: ResourcePhase.PENDING for rid in plan.order}
        results: Dict[str, ExecutionResult] = {}
        aborted: Optional[str] = None
        cancelled = False

        logger.info(
            "%s: %d recurso(s) en plan%s", self.target.name, len(plan), " (dry-run)" if dry_run else ""
        )
        for spec in plan:
            rid = spec.id
            if aborted:
                results[rid] = self._skip(rid, f"ejecución abortada: {aborted}")
                continue
            # La cancelación se revisa entre entradas; un apply en curso siempre termina
            if cancel is not None and cancel.is_set():
                cancelled = True
                results[rid] = self._skip(rid, "cancelado")
                continue
            blocked = [dep for dep in spec.depends_on if not results[dep].succeeded]
            if blocked:
                results[rid] = self._skip(rid, f"dependencia no satisfecha: {', '.join(blocked)}")
                continue
            try:
                results[rid] = self._reconcile_one(spec, dry_run)
            except AdapterInvariantViolation as e:
                logger.critical("%s: violación de invariante: %s", rid, e)
                self._transition(rid, ResourcePhase.FAILED)
                results[rid] = ExecutionResult(
                    rid, Outcome.FAILED, error=str(e), error_type=type(e).__name__
                )
                aborted = f"{rid}: {e}"

        report = StateReport(
            target=self.target.name,
            results=tuple(results[rid] for rid in plan.order),
            plan=plan.order,
            duration=self._clock() - started,
            dry_run=dry_run,
            aborted=aborted,
            cancelled=cancelled,
        )
        logger.info("%s: resultado %s en %.1fs", self.target.name, report.outcome.value, report.duration)
        return report

    # ------------------------------------------------------------------
    # Un recurso
    # ------------------------------------------------------------------

    def _reconcile_one(self, spec: ResourceSpec, dry_run: bool) -> ExecutionResult:
        rid = spec.id
        adapter = self.adapters[spec.kind]
        sensitive = sensitive_attributes(spec.desired)
        revealed: Set[str] = set()
        change_set: Optional[ChangeSet] = None
        try:
            # Secretos resueltos solo en el momento de la llamada
            desired = self.secrets.resolve(spec.desired)
            revealed = self.secrets.revealed(spec.desired)
            with redacting(revealed):
                self._transition(rid, ResourcePhase.READING)
                state = self._with_retry(rid, "read", lambda: adapter.read(self.target, spec.name, desired))

                self._transition(rid, ResourcePhase.DIFFING)
                change_set = adapter.diff(desired, state)
                if change_set.is_empty:
                    self._transition(rid, ResourcePhase.CONVERGED)
                    return ExecutionResult(rid, Outcome.CONVERGED, change_set=change_set)

                if dry_run:
                    self._transition(rid, ResourcePhase.PENDING)
                    return ExecutionResult(rid, Outcome.PENDING, change_set=_mask(change_set, sensitive))

                self._transition(rid, ResourcePhase.APPLYING)
                result = self._apply(rid, adapter, spec, desired, state, change_set)
            if result.outcome == Outcome.CONVERGED:
                self._transition(rid, ResourcePhase.CONVERGED)
            else:
                self._transition(rid, ResourcePhase.APPLIED)
            return ExecutionResult(
                rid,
                result.outcome,
                change_set=_mask(result.change_set or change_set, sensitive),
                notes=tuple(redact(note, revealed) for note in result.notes),
            )
        except AdapterInvariantViolation:
            raise
        except Exception as e:
            # También los fallos no previstos de un adapter o transporte quedan aislados al recurso
            return self._failed(rid, e, change_set, sensitive, revealed)

    def _failed(
        self,
        rid: str,
        error: Exception,
        change_set: Optional[ChangeSet],
        sensitive: set,
        revealed: Set[str],
    ) -> ExecutionResult:
        self._transition(rid, ResourcePhase.FAILED)
        message = redact(str(error), revealed) or type(error).__name__
        if isinstance(error, (ResourceError, ValidationError)):
            logger.warning("%s: %s: %s", rid, type(error).__name__, message)
        else:
            logger.error("%s: error inesperado %s: %s", rid, type(error).__name__, message)
        return ExecutionResult(
            rid,
            Outcome.FAILED,
            error=message,
            error_type=type(error).__name__,
            change_set=_mask(change_set, sensitive) if change_set else None,
        )

    def _apply(self, rid, adapter, spec, desired, state, change_set) -> ExecutionResult:
        attempt = 0
        refresh = False
        while True:
            try:
                if refresh:
                    # El destino pudo quedar a medio camino: se relee y se recalcula el diff
                    state = adapter.read(self.target, spec.name, desired)
                    change_set = adapter.diff(desired, state)
                    if change_set.is_empty:
                        return ExecutionResult(rid, Outcome.CONVERGED, change_set=change_set)
                result = adapter.apply(self.target, change_set, desired, state)
                break
            except TargetUnreachable as e:
                attempt += 1
                if attempt > self.retry.retries:
                    raise
                delay = self.retry.delay(attempt)
                logger.warning("%s: apply: %s; reintento %d/%d en %.1fs", rid, redact(str(e)), attempt, self.retry.retries, delay)
                self._sleep(delay)
                refresh = True

        if self.verify_after_apply and result.outcome == Outcome.APPLIED:
            after = self._with_retry(rid, "verify", lambda: adapter.read(self.target, spec.name, desired))
            remaining = adapter.diff(desired, after)
            if not remaining.is_empty:
                raise ApplyFailed(
                    "El recurso no convergió tras aplicar",
                    rid,
                    diagnostic=", ".join(remaining.attributes),
                )
        return result

    def _with_retry(self, rid: str, step: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except TargetUnreachable as e:
                attempt += 1
                if attempt > self.retry.retries:
                    raise
                delay = self.retry.delay(attempt)
                logger.warning("%s: %s: %s; reintento %d/%d en %.1fs", rid, step, redact(str(e)), attempt, self.retry.retries, delay)
                self._sleep(delay)

    def _skip(self, rid: str, reason: str) -> ExecutionResult:
        self._transition(rid, ResourcePhase.SKIPPED)
        logger.info("%s: omitido (%s)", rid, reason)
        return ExecutionResult(rid, Outcome.SKIPPED, error=reason)

    def _transition(self, rid: str, phase: ResourcePhase) -> None:
        previous = self.phases.get(rid, ResourcePhase.PENDING)
        self.phases[rid] = phase
        logger.debug("%s: %s → %s", rid, previous.value, phase.value)
        if self._observer is not None:
            self._observer(rid, phase)


def _mask(change_set: ChangeSet, sensitive: set) -> ChangeSet:
    """Reemplaza los valores de atributos con secretos antes de que lleguen al reporte."""
    if not sensitive:
        return change_set
    ops = tuple(
        AttributeChange(op.attribute, MASK, MASK, sensitive=True) if op.attribute in sensitive else op
        for op in change_set
    )
    return ChangeSet(change_set.resource_id, ops)
