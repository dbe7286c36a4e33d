"""
Resolución de rutas del proyecto.

- project_base(): directorio base del proyecto (donde vive reposync.yaml).
- default_document(): documento de estado deseado por defecto.
- default_secrets_dir(): directorio de secretos por defecto (fuera del control de versiones).

El core NO escribe en disco; solo expone estas rutas.
"""

import os
from pathlib import Path
from typing import Optional


DOCUMENT_NAME = "reposync.yaml"
SECRETS_DIR_NAME = "secrets"


def project_base() -> Optional[Path]:
    """
    Directorio base del proyecto.
    Resolución: RS_PROJECT_ROOT → primer directorio (cwd o ancestros) que contenga reposync.yaml.
    """
    explicit = os.environ.get("RS_PROJECT_ROOT", "").strip()
    if explicit:
        return Path(explicit).expanduser().resolve()

    cwd = Path.cwd()
    for d in [cwd] + list(cwd.parents):
        if (d / DOCUMENT_NAME).exists():
            return d.resolve()
    return None


def default_document() -> Path:
    """Documento de estado deseado: <project_base>/reposync.yaml o ./reposync.yaml."""
    base = project_base()
    return (base or Path.cwd()) / DOCUMENT_NAME


def default_secrets_dir() -> Path:
    """Directorio de secretos: <project_base>/secrets o ./secrets."""
    base = project_base()
    return (base or Path.cwd()) / SECRETS_DIR_NAME
