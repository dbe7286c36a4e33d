"""
Validación pre-flight del estado deseado (lógica pura).

Sin I/O; solo reglas sobre estructuras de datos. Todo error aquí ocurre antes
de cualquier efecto sobre el destino.
"""

from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from reposync.core.errors import ValidationError
from reposync.core.project.models import ResourceSpec
from reposync.core.runtime.secrets import SecretStore, references


def validate_unique_ids(specs: Sequence[ResourceSpec]) -> None:
    """Identidad (kind, name) única dentro del documento."""
    seen = set()
    for spec in specs:
        if spec.id in seen:
            raise ValidationError(f"Recurso duplicado: {spec.id}")
        seen.add(spec.id)


def resolve_dependency(dep: str, specs: Sequence[ResourceSpec], owner: str) -> str:
    """'kind/name' exacto, o 'name' si identifica a un único recurso."""
    ids = [s.id for s in specs]
    if dep in ids:
        return dep
    matches = [s.id for s in specs if s.name == dep]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValidationError(f"{owner}: dependencia ambigua '{dep}' ({', '.join(matches)})")
    raise ValidationError(f"{owner}: dependencia desconocida '{dep}'")


def normalize_dependencies(specs: Sequence[ResourceSpec]) -> Dict[str, Tuple[str, ...]]:
    """id → tupla de ids de dependencias (sin duplicados, en orden declarado)."""
    validate_unique_ids(specs)
    graph: Dict[str, Tuple[str, ...]] = {}
    for spec in specs:
        deps: List[str] = []
        for dep in spec.depends_on:
            rid = resolve_dependency(dep, specs, spec.id)
            if rid not in deps:
                deps.append(rid)
        graph[spec.id] = tuple(deps)
    return graph


def validate_kinds(specs: Iterable[ResourceSpec], adapters: Mapping[str, object]) -> None:
    """Cada kind declarado debe tener un adapter registrado; el adapter valida sus atributos."""
    for spec in specs:
        adapter = adapters.get(spec.kind)
        if adapter is None:
            known = ", ".join(sorted(adapters)) or "(ninguno)"
            raise ValidationError(f"{spec.id}: kind desconocido '{spec.kind}'. Disponibles: {known}")
        adapter.validate(spec.name, spec.desired)


def validate_secret_references(specs: Iterable[ResourceSpec], store: SecretStore) -> None:
    """Todas las referencias ${secret:...} deben resolverse (el valor no se conserva)."""
    for spec in specs:
        for name in references(spec.desired):
            if not store.has(name):
                raise ValidationError(f"{spec.id}: secreto '{name}' no disponible")


def validate_specs(
    specs: Sequence[ResourceSpec],
    adapters: Mapping[str, object],
    store: SecretStore,
) -> None:
    """Validación completa pre-flight."""
    normalize_dependencies(specs)
    validate_kinds(specs, adapters)
    validate_secret_references(specs, store)
