"""
Configuración desde variables de entorno RS_*.

Orden: .env del proyecto (python-dotenv, no pisa variables ya definidas) → entorno.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from reposync.core.errors import ConfigError
from reposync.core.runtime.resolver import default_document, default_secrets_dir, project_base


PREFIX = "RS_"
DEFAULT_SSHD_DROPIN = "/etc/ssh/sshd_config.d/00-reposync.conf"


class Settings(BaseModel):
    """Ajustes de ejecución del Control Plane."""
    log_level: str = Field("info", description="debug | info | warning | error")
    command_timeout: float = Field(60.0, gt=0, description="Timeout por llamada read/apply (s)")
    retries: int = Field(2, ge=0, le=10, description="Reintentos ante TargetUnreachable")
    backoff_base: float = Field(1.0, ge=0, description="Backoff exponencial: base (s)")
    backoff_max: float = Field(30.0, ge=0, description="Backoff exponencial: tope (s)")
    probe_attempts: int = Field(5, ge=1, description="Intentos de verificación de acceso")
    probe_delay: float = Field(2.0, ge=0, description="Pausa entre intentos de verificación (s)")
    secrets_dir: Path = Field(default_factory=default_secrets_dir)
    document: Path = Field(default_factory=default_document)
    sshd_dropin: str = Field(DEFAULT_SSHD_DROPIN, description="Drop-in gestionado de sshd")
    verify_after_apply: bool = Field(True, description="Releer y exigir diff vacío tras apply")

    @field_validator("log_level")
    @classmethod
    def valid_log_level(cls, v: str) -> str:
        valid = {"debug", "info", "warning", "error"}
        if v.lower() not in valid:
            raise ValueError(f"Nivel de log inválido: {v}. Debe ser uno de {sorted(valid)}")
        return v.lower()


_FIELDS = {
    "LOG_LEVEL": "log_level",
    "COMMAND_TIMEOUT": "command_timeout",
    "RETRIES": "retries",
    "BACKOFF_BASE": "backoff_base",
    "BACKOFF_MAX": "backoff_max",
    "PROBE_ATTEMPTS": "probe_attempts",
    "PROBE_DELAY": "probe_delay",
    "SECRETS_DIR": "secrets_dir",
    "DOCUMENT": "document",
    "SSHD_DROPIN": "sshd_dropin",
    "VERIFY_AFTER_APPLY": "verify_after_apply",
}


def load_dotenv_file() -> None:
    """Carga .env del proyecto si existe."""
    base = project_base()
    env_file = (base or Path.cwd()) / ".env"
    if env_file.exists():
        load_dotenv(env_file)


def load_settings(environ: Optional[Mapping[str, str]] = None, **overrides) -> Settings:
    """
    Construye Settings desde RS_* (por defecto os.environ, tras cargar .env).
    Los overrides explícitos (CLI) tienen prioridad.
    """
    if environ is None:
        load_dotenv_file()
        environ = os.environ

    values = {}
    for key, field_name in _FIELDS.items():
        raw = environ.get(f"{PREFIX}{key}")
        if raw is not None and raw.strip() != "":
            values[field_name] = raw.strip()
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        settings = Settings(**values)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{PREFIX}{_env_name(str(err['loc'][0]))}: {err['msg']}" for err in e.errors() if err.get("loc")
        )
        raise ConfigError(f"Configuración inválida: {details}") from e
    settings.secrets_dir = settings.secrets_dir.expanduser()
    settings.document = settings.document.expanduser()
    return settings


def _env_name(field_name: str) -> str:
    for key, name in _FIELDS.items():
        if name == field_name:
            return key
    return field_name.upper()
