"""
Core: lógica de negocio pura.

ENFORCEMENT (arquitectura limpia):
- Este paquete NO debe importar: reposync.cli, reposync.providers (implementaciones)
  ni reposync.transport.
- Permitido: typing, pathlib.Path, pydantic, yaml (solo en project.loader),
  reposync.core.* (errors, runtime, infra/contracts).
- Los providers, los transportes y la CLI importan desde core; nunca al revés.
"""

from reposync.core.errors import (
    AdapterInvariantViolation,
    ApplyFailed,
    ConfigError,
    CycleDetected,
    PermissionDenied,
    ReposyncError,
    ResourceError,
    TargetUnreachable,
    ValidationError,
)

__all__ = [
    "ReposyncError",
    "ValidationError",
    "ConfigError",
    "CycleDetected",
    "ResourceError",
    "TargetUnreachable",
    "PermissionDenied",
    "ApplyFailed",
    "AdapterInvariantViolation",
]
