"""
Contratos de estado (State): lo observado en el destino y las diferencias contra lo deseado.

ResourceState y ChangeSet son efímeros: se crean y descartan dentro del paso de
reconciliación de un solo recurso. Nunca se persisten.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple


MASK = "********"


def resource_id(kind: str, name: str) -> str:
    """Identificador canónico de un recurso: kind/name."""
    return f"{kind}/{name}"


@dataclass
class ResourceState:
    """Estado real de un recurso leído del destino."""
    kind: str
    name: str
    observed: Dict[str, Any] = field(default_factory=dict)
    present: bool = True
    # Hechos de solo lectura que el diff necesita (lista upstream, puerto de acceso vivo...)
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return resource_id(self.kind, self.name)


@dataclass(frozen=True)
class AttributeChange:
    """Cambio de un atributo: from_value → to_value."""
    attribute: str
    from_value: Any
    to_value: Any
    sensitive: bool = False

    def describe(self) -> str:
        """Línea legible; enmascara valores sensibles."""
        if self.sensitive:
            return f"{self.attribute}: {MASK} → {MASK}"
        return f"{self.attribute}: {_fmt(self.from_value)} → {_fmt(self.to_value)}"

    def masked(self) -> "AttributeChange":
        return AttributeChange(self.attribute, self.from_value, self.to_value, sensitive=True)

    def to_dict(self) -> Dict[str, Any]:
        if self.sensitive:
            return {"attribute": self.attribute, "from": MASK, "to": MASK}
        return {"attribute": self.attribute, "from": self.from_value, "to": self.to_value}


@dataclass(frozen=True)
class ChangeSet:
    """Operaciones ordenadas para llevar un recurso al estado deseado. Vacío ⇒ convergido."""
    resource_id: str
    operations: Tuple[AttributeChange, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[AttributeChange]:
        return iter(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def attributes(self) -> Tuple[str, ...]:
        return tuple(op.attribute for op in self.operations)

    def get(self, attribute: str) -> Optional[AttributeChange]:
        for op in self.operations:
            if op.attribute == attribute:
                return op
        return None

    def summary(self) -> str:
        return "; ".join(op.describe() for op in self.operations)


def _fmt(value: Any) -> str:
    if value is None:
        return "(ausente)"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(str(v) for v in value) + "]"
    return str(value)
