"""
Loader del documento de estado deseado.
Carga YAML y lo convierte a modelos Pydantic.
"""

from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError as PydanticValidationError

from reposync.core.errors import ConfigError, ValidationError
from reposync.core.project.models import DesiredState
from reposync.core.project.validator import normalize_dependencies


class DesiredStateLoader:
    """Carga y guarda reposync.yaml."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> DesiredState:
        if not self.path.exists():
            raise ConfigError(f"Documento no encontrado: {self.path}")
        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML inválido en {self.path}: {e}") from e
        return parse_document(data, source=str(self.path))

    def load_raw(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise ConfigError(f"Documento no encontrado: {self.path}")
        with open(self.path, "r") as f:
            return yaml.safe_load(f) or {}

    def save_raw(self, data: Dict[str, Any]) -> None:
        """Escribe el documento (valida antes de tocar disco)."""
        parse_document(data, source=str(self.path))
        with open(self.path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def parse_document(data: Any, source: str = "<documento>") -> DesiredState:
    """Dato ya parseado → DesiredState validado (ids únicos, dependencias resolubles)."""
    if not isinstance(data, dict):
        raise ValidationError(f"{source}: el documento debe ser un mapeo")
    try:
        document = DesiredState(**data)
    except PydanticValidationError as e:
        raise ValidationError(f"{source}: {_format_errors(e)}") from e
    normalize_dependencies(document.resources)
    return document


def _format_errors(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)
