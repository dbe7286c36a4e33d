"""
Project: modelos, carga, validación y planificación del estado deseado.

Lógica pura salvo el loader (lee/escribe el YAML); sin dependencias de CLI, transportes ni adapters.
"""

from reposync.core.project.loader import DesiredStateLoader, parse_document
from reposync.core.project.models import ConnectionType, DesiredState, ResourceSpec, TargetConfig
from reposync.core.project.planner import Plan, Planner
from reposync.core.project.validator import (
    normalize_dependencies,
    validate_kinds,
    validate_secret_references,
    validate_specs,
)

__all__ = [
    "ConnectionType",
    "DesiredState",
    "DesiredStateLoader",
    "Plan",
    "Planner",
    "ResourceSpec",
    "TargetConfig",
    "normalize_dependencies",
    "parse_document",
    "validate_kinds",
    "validate_secret_references",
    "validate_specs",
]
