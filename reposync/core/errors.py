"""
Errores del Control Plane.

El core solo define excepciones; las capas (CLI/API) se encargan del formato de salida.

Jerarquía:
- Pre-flight (fallan toda la ejecución antes de cualquier efecto):
  ValidationError, ConfigError, CycleDetected
- Por recurso (aislados al recurso y sus dependientes):
  TargetUnreachable, PermissionDenied, ApplyFailed
- Fatal (aborta la ejecución completa): AdapterInvariantViolation
"""

from typing import Iterable, Optional, Tuple


class ReposyncError(Exception):
    """Error base de RepoSync."""
    pass


class ValidationError(ReposyncError):
    """Error de validación del documento de estado deseado o de un atributo."""
    pass


class ConfigError(ReposyncError):
    """Error de configuración (archivo faltante, formato inválido, variable RS_* inválida)."""
    pass


class CycleDetected(ReposyncError):
    """El grafo de dependencias contiene un ciclo."""

    def __init__(self, resource_ids: Iterable[str]):
        self.resource_ids: Tuple[str, ...] = tuple(resource_ids)
        super().__init__(f"Ciclo de dependencias: {' -> '.join(self.resource_ids)}")


class ResourceError(ReposyncError):
    """Error aislado a un recurso (y a los recursos que dependen de él)."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource_id = resource_id


class TargetUnreachable(ResourceError):
    """No se pudo contactar al host destino (conexión rechazada, timeout)."""
    pass


class PermissionDenied(ResourceError):
    """El usuario no tiene permisos para inspeccionar o modificar el recurso."""
    pass


class ApplyFailed(ResourceError):
    """Fallo específico de un adapter; lleva el diagnóstico del comando."""

    def __init__(self, message: str, resource_id: Optional[str] = None, diagnostic: str = ""):
        super().__init__(message, resource_id)
        self.diagnostic = diagnostic

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostic:
            return f"{base}: {self.diagnostic.strip()[:300]}"
        return base


class AdapterInvariantViolation(ReposyncError):
    """
    Un adapter intentó revocar su propio camino de acceso sin un reemplazo
    confirmado (commit-then-cutover). Nunca se aísla: aborta la ejecución.
    """

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource_id = resource_id
