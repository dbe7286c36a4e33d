"""
Base para adapters: implementación por defecto de validate/diff/apply y la
guarda commit-then-cutover de los adapters de camino de acceso.

Los adapters pueden heredar de aquí o implementar solo el contrato (Protocol).
"""

import logging
import shlex
import time
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Union

from reposync.core.errors import (
    AdapterInvariantViolation,
    ApplyFailed,
    PermissionDenied,
    ValidationError,
)
from reposync.core.infra.contracts import CommandResult, ExecutionResult, Outcome, TargetHandle
from reposync.core.runtime.secrets import redact
from reposync.core.runtime.state import AttributeChange, ChangeSet, ResourceState, resource_id

logger = logging.getLogger("reposync.adapters")

_PERMISSION_MARKERS = ("permission denied", "must be root", "are you root", "not permitted", "a password is required")


class CutoverGuard:
    """
    Commit-then-cutover: ninguna revocación del camino de acceso antes de que
    el reemplazo esté instalado (commit) y verificado (verify).
    """

    def __init__(self, rid: str, sleep: Callable[[float], None] = time.sleep):
        self.resource_id = rid
        self.committed = False
        self.verified = False
        self._sleep = sleep

    def commit(self, action: Callable[[], None]) -> None:
        action()
        self.committed = True
        self.verified = False

    def verify(self, check: Callable[[], bool], attempts: int = 1, delay: float = 0.0) -> bool:
        if not self.committed:
            raise AdapterInvariantViolation(
                "Verificación de acceso sin un reemplazo instalado", self.resource_id
            )
        for attempt in range(max(1, attempts)):
            if check():
                self.verified = True
                return True
            if attempt + 1 < attempts and delay:
                self._sleep(delay)
        self.verified = False
        return False

    def revoke(self, action: Callable[[], None]) -> None:
        if not (self.committed and self.verified):
            raise AdapterInvariantViolation(
                "Intento de revocar el camino de acceso antes de confirmar el reemplazo",
                self.resource_id,
            )
        action()


class BaseAdapter:
    """Base opcional para adapters; no obligatorio usar herencia."""

    kind: str = "base"
    # Adapters que tocan el camino de acceso (sshd, firewall): grupo de exclusión mutua
    access_path: bool = False
    # Atributos gestionados (None = cualquiera) y parámetros (entradas que no se comparan)
    attributes: Optional[FrozenSet[str]] = None
    parameters: FrozenSet[str] = frozenset()
    required: FrozenSet[str] = frozenset()

    def __init__(
        self,
        timeout: float = 60.0,
        probe_attempts: int = 5,
        probe_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.probe_attempts = probe_attempts
        self.probe_delay = probe_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Contrato
    # ------------------------------------------------------------------

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        if not isinstance(desired, dict):
            raise ValidationError(f"{resource_id(self.kind, name)}: 'desired' debe ser un diccionario")
        missing = [key for key in sorted(self.required) if key not in desired]
        if missing:
            raise ValidationError(
                f"{resource_id(self.kind, name)}: faltan atributos requeridos: {', '.join(missing)}"
            )
        if self.attributes is not None:
            allowed = self.attributes | self.parameters
            unknown = [key for key in desired if key not in allowed]
            if unknown:
                raise ValidationError(
                    f"{resource_id(self.kind, name)}: atributos desconocidos: {', '.join(unknown)}"
                )

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        raise NotImplementedError

    def diff(self, desired: Dict[str, Any], state: ResourceState) -> ChangeSet:
        """Por defecto: compara atributo a atributo lo declarado (propiedad parcial)."""
        ops: List[AttributeChange] = []
        for attribute, value in desired.items():
            if attribute in self.parameters:
                continue
            want = self.normalize(attribute, value)
            have = self.normalize(attribute, state.observed.get(attribute))
            if want != have:
                ops.append(AttributeChange(attribute, have, want))
        return ChangeSet(state.id, tuple(ops))

    def apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> ExecutionResult:
        if change_set.is_empty:
            return ExecutionResult(change_set.resource_id, Outcome.CONVERGED, change_set=change_set)
        notes = self._apply(target, change_set, desired, state) or []
        return ExecutionResult(
            change_set.resource_id, Outcome.APPLIED, change_set=change_set, notes=tuple(notes)
        )

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        """Aplica el ChangeSet no vacío. Devuelve notas opcionales para el reporte."""
        raise NotImplementedError

    def normalize(self, attribute: str, value: Any) -> Any:
        """Forma canónica de un valor antes de comparar (hook para subclases)."""
        return value

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def guard(self, rid: str) -> CutoverGuard:
        return CutoverGuard(rid, sleep=self._sleep)

    def run(
        self,
        target: TargetHandle,
        command: Union[str, Sequence[str]],
        rid: str,
        input: Optional[str] = None,
        check: bool = True,
    ) -> CommandResult:
        """
        Ejecuta un comando en el destino con el timeout del adapter.

        Con check=True, un exit code distinto de 0 se traduce a PermissionDenied
        (si el stderr lo indica) o ApplyFailed con el diagnóstico. Los secretos
        del recurso en curso no aparecen ni en el log ni en el error.
        """
        cmd = command if isinstance(command, str) else shlex.join(command)
        shown = redact(cmd)
        logger.debug("%s: $ %s", rid, shown)
        result = target.execute(cmd, input=input, timeout=self.timeout)
        if check and not result.ok:
            raise self.command_error(rid, shown, result)
        return result

    @staticmethod
    def command_error(rid: str, cmd: str, result: CommandResult) -> Exception:
        stderr = redact((result.stderr or "").strip())
        if any(marker in stderr.lower() for marker in _PERMISSION_MARKERS):
            return PermissionDenied(f"Sin permisos para '{cmd.split()[0]}': {stderr[:200]}", rid)
        return ApplyFailed(f"Comando falló (exit {result.exit_code}): {cmd}", rid, diagnostic=stderr)


def as_bool(value: Any) -> Optional[bool]:
    """yes/no, true/false, on/off, 1/0 → bool. None se conserva."""
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("yes", "true", "on", "1", "enabled", "active"):
        return True
    if text in ("no", "false", "off", "0", "disabled", "inactive"):
        return False
    return None


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]
