"""
Resolución de secretos por indirección: ${secret:nombre}.

Los valores se resuelven solo en el momento de la llamada al adapter; el core
nunca los persiste ni los escribe en logs. Tampoco hay caché global de secretos:
cada Reconciler recibe su propio SecretStore.

Mientras se reconcilia un recurso, `redacting()` deja activos los fragmentos de
sus secretos; `redact()` los reemplaza en comandos, errores y registros de log.
"""

import json
import os
import re
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Set

from reposync.core.errors import ValidationError
from reposync.core.runtime.state import MASK


SECRET_REF = re.compile(r"\$\{secret:([^}]*)\}")
_VALID_NAME = re.compile(r"^[a-zA-Z0-9_-]+$")
# Fragmentos más cortos (yes, 22, ...) no se enmascaran
MIN_REDACT_LENGTH = 4

_ACTIVE: ContextVar[FrozenSet[str]] = ContextVar("reposync_redacted_secrets", default=frozenset())


class SecretStore:
    """
    Fuente de secretos: variable de entorno (NOMBRE en mayúsculas) o archivo
    <secrets_dir>/<nombre>. Los valores explícitos (`values`) tienen prioridad.
    """

    def __init__(self, secrets_dir: Optional[Path] = None, values: Optional[Mapping[str, str]] = None):
        self.secrets_dir = secrets_dir
        self._values = dict(values or {})

    def get(self, name: str) -> str:
        """
        Obtiene un secreto.

        Seguridad: valida que el nombre no escape del directorio de secretos.
        """
        if not _VALID_NAME.match(name):
            raise ValidationError(f"Nombre de secreto inválido '{name}': solo alfanumérico, guion y guion bajo")

        if name in self._values:
            return self._values[name]

        env_name = name.upper().replace("-", "_")
        if val := os.environ.get(env_name):
            return val

        if self.secrets_dir is not None:
            root = self.secrets_dir.resolve()
            secret_file = (root / name).resolve()
            try:
                secret_file.relative_to(root)
            except ValueError:
                raise ValidationError(f"Nombre de secreto inválido '{name}': path traversal detectado")
            if secret_file.is_file():
                return secret_file.read_text().strip()

        raise ValidationError(f"Secreto '{name}' no encontrado en entorno ni en {self.secrets_dir}")

    def has(self, name: str) -> bool:
        try:
            self.get(name)
            return True
        except ValidationError:
            return False

    def resolve(self, value: Any) -> Any:
        """Sustituye recursivamente cada ${secret:nombre} por su valor."""
        if isinstance(value, str):
            return SECRET_REF.sub(lambda m: self.get(m.group(1)), value)
        if isinstance(value, list):
            return [self.resolve(v) for v in value]
        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        return value

    def revealed(self, value: Any) -> Set[str]:
        """Fragmentos de texto de los secretos referenciados en value (para enmascarar)."""
        fragments: Set[str] = set()
        for name in references(value):
            fragments |= secret_fragments(self.get(name))
        return fragments


def references(value: Any) -> Iterator[str]:
    """Nombres de secretos referenciados (recursivo)."""
    if isinstance(value, str):
        for m in SECRET_REF.finditer(value):
            yield m.group(1)
    elif isinstance(value, list):
        for v in value:
            yield from references(v)
    elif isinstance(value, dict):
        for v in value.values():
            yield from references(v)


def sensitive_attributes(desired: Dict[str, Any]) -> set:
    """Atributos cuyo valor deseado contiene al menos una referencia a secreto."""
    return {key for key, value in desired.items() if any(True for _ in references(value))}


def secret_fragments(value: str) -> Set[str]:
    """
    Texto de un secreto que no debe salir en logs ni reportes: el valor completo
    y, si es JSON (lista de dispositivos, por ejemplo), cada hoja de texto o número.
    """
    fragments = {value.strip()}
    try:
        pending = [json.loads(value)]
    except json.JSONDecodeError:
        pending = []
    while pending:
        item = pending.pop()
        if isinstance(item, dict):
            pending.extend(item.values())
        elif isinstance(item, list):
            pending.extend(item)
        elif isinstance(item, (str, int, float)) and not isinstance(item, bool):
            text = str(item).strip()
            # Los adapters normalizan algunos valores a mayúsculas (Device IDs)
            fragments.update({text, text.upper()})
    return {f for f in fragments if len(f) >= MIN_REDACT_LENGTH}


@contextmanager
def redacting(fragments: Iterable[str]) -> Iterator[None]:
    """Activa el enmascarado de `fragments` durante el bloque."""
    token = _ACTIVE.set(frozenset(fragments))
    try:
        yield
    finally:
        _ACTIVE.reset(token)


def redact(text: str, fragments: Optional[Iterable[str]] = None) -> str:
    """Reemplaza cada fragmento secreto por MASK (por defecto, los activos)."""
    active = _ACTIVE.get() if fragments is None else fragments
    # Los más largos primero: un fragmento puede contener a otro
    for fragment in sorted(active, key=len, reverse=True):
        text = text.replace(fragment, MASK)
    return text
