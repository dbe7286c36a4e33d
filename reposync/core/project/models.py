"""
Modelos del documento de estado deseado (agnósticos de interfaz y filesystem).

El documento (reposync.yaml) declara destinos y recursos:

    version: 1
    targets:
      vps:
        host: 203.0.113.10
        user: deploy
        port: 22
    resources:
      - kind: firewall
        name: ufw
        tags: [firewall]
        desired: {enabled: true, allow: ["2222/tcp"]}
      - kind: sshd
        name: main
        depends_on: [firewall/ufw]
        desired: {port: 2222, password_authentication: false}
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from reposync.core.runtime.state import resource_id


class ConnectionType(str, Enum):
    SSH = "ssh"
    LOCAL = "local"


class TargetConfig(BaseModel):
    """Cómo alcanzar un host gestionado."""
    host: str = Field("localhost", description="Hostname o IP")
    connection: ConnectionType = Field(ConnectionType.SSH, description="ssh | local")
    user: str = Field("root", description="Usuario SSH")
    port: int = Field(22, ge=1, le=65535, description="Puerto SSH actual (camino de acceso)")
    key_path: Optional[str] = Field(None, description="Ruta a clave SSH privada")
    become: bool = Field(True, description="Ejecutar comandos con sudo")
    ssh_options: List[str] = Field(default_factory=list, description="Opciones extra -o para ssh")

    class Config:
        use_enum_values = True


class ResourceSpec(BaseModel):
    """
    Recurso declarado. Identidad = (kind, name), única dentro del documento.
    depends_on acepta 'kind/name' o 'name' si no es ambiguo; el validator lo normaliza.
    """
    kind: str = Field(..., min_length=1, description="Tipo de recurso (sshd, firewall, ...)")
    name: str = Field(..., min_length=1, description="Nombre del recurso")
    desired: Dict[str, Any] = Field(default_factory=dict, description="Atributo → valor deseado")
    depends_on: List[str] = Field(default_factory=list, description="Identificadores de dependencias")
    tags: List[str] = Field(default_factory=list, description="Etiquetas para --tags/--skip")

    @field_validator("kind")
    @classmethod
    def kind_without_slash(cls, v: str) -> str:
        if "/" in v:
            raise ValueError("kind no puede contener '/'")
        return v

    @field_validator("depends_on")
    @classmethod
    def dedupe_dependencies(cls, v: List[str]) -> List[str]:
        """depends_on es un conjunto: elimina duplicados conservando el orden."""
        seen: List[str] = []
        for dep in v:
            if dep not in seen:
                seen.append(dep)
        return seen

    @property
    def id(self) -> str:
        return resource_id(self.kind, self.name)

    def selected(self, tags: Optional[List[str]] = None, skip_tags: Optional[List[str]] = None) -> bool:
        """Filtro por etiquetas; kind y name cuentan como etiquetas implícitas."""
        labels = set(self.tags) | {self.kind, self.name}
        if tags and not labels.intersection(tags):
            return False
        if skip_tags and labels.intersection(skip_tags):
            return False
        return True


class DesiredState(BaseModel):
    """Documento raíz (reposync.yaml)."""
    version: int = Field(1, description="Versión del esquema")
    targets: Dict[str, TargetConfig] = Field(default_factory=dict, description="Destinos por nombre")
    resources: List[ResourceSpec] = Field(default_factory=list, description="Recursos en orden de declaración")

    @model_validator(mode="after")
    def check_version(self):
        if self.version != 1:
            raise ValueError(f"Versión de esquema no soportada: {self.version}")
        return self

    def get(self, rid: str) -> Optional[ResourceSpec]:
        for spec in self.resources:
            if spec.id == rid:
                return spec
        return None

    def all_tags(self) -> List[str]:
        tags: List[str] = []
        for spec in self.resources:
            for tag in [spec.kind] + spec.tags:
                if tag not in tags:
                    tags.append(tag)
        return tags
