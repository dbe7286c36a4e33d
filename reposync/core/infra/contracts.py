"""
Contratos que deben implementar los adapters de recursos y los handles de destino.

El core solo define interfaces; la implementación vive en reposync/providers/*
(adapters) y reposync/transport/* (handles SSH/local).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple

from reposync.core.runtime.state import ChangeSet, ResourceState


@dataclass(frozen=True)
class CommandResult:
    """Resultado de ejecutar un comando en el destino."""
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Outcome(str, Enum):
    CONVERGED = "converged"
    APPLIED = "applied"
    PENDING = "pending"  # solo dry-run: hay cambios que se aplicarían
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self in (Outcome.CONVERGED, Outcome.APPLIED, Outcome.PENDING)


@dataclass(frozen=True)
class ExecutionResult:
    """Resultado de reconciliar un recurso."""
    resource_id: str
    outcome: Outcome
    error: Optional[str] = None
    error_type: Optional[str] = None
    change_set: Optional[ChangeSet] = None
    notes: Tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.outcome.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": self.resource_id,
            "outcome": self.outcome.value,
            "error": self.error,
            "error_type": self.error_type,
            "changes": [op.to_dict() for op in self.change_set] if self.change_set else [],
            "notes": list(self.notes),
        }


class TargetHandle(Protocol):
    """
    Acceso de transporte al host gestionado. El Reconciler es su único dueño
    durante la ejecución; los adapters lo toman prestado en cada llamada y no
    guardan estado de conexión entre llamadas.
    """

    @property
    def name(self) -> str:
        """Nombre del destino (ej: vps, localhost)."""
        ...

    @property
    def access_port(self) -> int:
        """Puerto por el que se accede hoy al destino (camino de acceso vivo)."""
        ...

    def execute(self, command: str, input: Optional[str] = None, timeout: Optional[float] = None) -> CommandResult:
        """Ejecuta un comando. Lanza TargetUnreachable si no hay conexión o vence el timeout."""
        ...

    def fetch_file(self, path: str, timeout: Optional[float] = None) -> Optional[str]:
        """Contenido de un archivo remoto, o None si no existe."""
        ...

    def push_file(
        self,
        path: str,
        content: str,
        mode: Optional[str] = None,
        owner: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Escribe un archivo remoto (atómico para el lector)."""
        ...

    def probe(self, port: int, timeout: float = 5.0) -> bool:
        """Verificación externa: ¿el puerto acepta conexiones?"""
        ...

    def verify_key_access(self, port: int, timeout: float = 10.0) -> bool:
        """Verificación externa: ¿funciona el login por clave en ese puerto?"""
        ...

    def switch_port(self, port: int) -> None:
        """Usa un nuevo puerto de acceso tras un cutover confirmado."""
        ...


class ResourceAdapter(Protocol):
    """
    Contrato de un adapter (sshd, firewall, syncthing, ...).
    read → diff → apply; diff es puro y apply es idempotente.
    """

    kind: str
    access_path: bool
    timeout: float

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        """Lanza ValidationError si algún atributo deseado está mal formado."""
        ...

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        """Consulta en el destino los atributos que gestiona este kind."""
        ...

    def diff(self, desired: Dict[str, Any], state: ResourceState) -> ChangeSet:
        """Compara solo los atributos declarados en desired (sin efectos)."""
        ...

    def apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> ExecutionResult:
        """Ejecuta las operaciones mínimas. Re-aplicar un cambio ya aplicado es no-op (converged)."""
        ...
