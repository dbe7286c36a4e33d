"""
Planificación: ordena los recursos por dependencias sin ejecutar nada.

Lógica pura: entrada = ResourceSpecs; salida = Plan en orden topológico.
Los empates entre recursos independientes se resuelven por orden de declaración,
de modo que ejecuciones repetidas producen planes idénticos.
"""

import heapq
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Set, Tuple

from reposync.core.errors import CycleDetected
from reposync.core.project.models import ResourceSpec
from reposync.core.project.validator import normalize_dependencies


@dataclass(frozen=True)
class Plan:
    """Secuencia ordenada de ResourceSpec (depends_on normalizado a ids)."""
    entries: Tuple[ResourceSpec, ...]
    # Dependencias excluidas por filtro de etiquetas: se consideran satisfechas externamente
    external: FrozenSet[str] = field(default_factory=frozenset)

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def order(self) -> Tuple[str, ...]:
        return tuple(spec.id for spec in self.entries)

    def dependencies(self, rid: str) -> Tuple[str, ...]:
        """Dependencias directas de rid dentro del plan."""
        for spec in self.entries:
            if spec.id == rid:
                return tuple(spec.depends_on)
        return ()

    def dependents(self, rid: str) -> Set[str]:
        """Recursos que dependen (transitivamente) de rid."""
        out: Set[str] = set()
        frontier = [rid]
        while frontier:
            current = frontier.pop()
            for spec in self.entries:
                if current in spec.depends_on and spec.id not in out:
                    out.add(spec.id)
                    frontier.append(spec.id)
        return out


class Planner:
    """Orden topológico estable (Kahn con prioridad por índice de declaración)."""

    def plan(
        self,
        specs: Sequence[ResourceSpec],
        tags: Optional[List[str]] = None,
        skip_tags: Optional[List[str]] = None,
    ) -> Plan:
        graph = normalize_dependencies(specs)

        selected = [s for s in specs if s.selected(tags, skip_tags)]
        selected_ids = {s.id for s in selected}
        external: Set[str] = set()
        normalized: List[ResourceSpec] = []
        for spec in selected:
            deps = [d for d in graph[spec.id] if d in selected_ids]
            external.update(d for d in graph[spec.id] if d not in selected_ids)
            normalized.append(spec.model_copy(update={"depends_on": deps}))

        ordered = self._sort(normalized)
        return Plan(entries=tuple(ordered), external=frozenset(external))

    def _sort(self, specs: List[ResourceSpec]) -> List[ResourceSpec]:
        index = {spec.id: i for i, spec in enumerate(specs)}
        pending: Dict[str, int] = {spec.id: len(spec.depends_on) for spec in specs}
        dependents: Dict[str, List[str]] = {spec.id: [] for spec in specs}
        for spec in specs:
            for dep in spec.depends_on:
                dependents[dep].append(spec.id)

        ready = [index[rid] for rid, count in pending.items() if count == 0]
        heapq.heapify(ready)
        ordered: List[ResourceSpec] = []
        while ready:
            spec = specs[heapq.heappop(ready)]
            ordered.append(spec)
            for child in dependents[spec.id]:
                pending[child] -= 1
                if pending[child] == 0:
                    heapq.heappush(ready, index[child])

        if len(ordered) != len(specs):
            remaining = {rid for rid, count in pending.items() if count > 0}
            raise CycleDetected(self._find_cycle(specs, remaining))
        return ordered

    @staticmethod
    def _find_cycle(specs: List[ResourceSpec], remaining: Set[str]) -> List[str]:
        """Extrae un ciclo concreto (a -> b -> ... -> a) entre los nodos sin resolver."""
        deps = {spec.id: [d for d in spec.depends_on if d in remaining] for spec in specs if spec.id in remaining}
        start = next(spec.id for spec in specs if spec.id in remaining)
        path: List[str] = []
        position: Dict[str, int] = {}
        node = start
        # Todo nodo restante tiene al menos una dependencia restante: seguirlas termina en un ciclo
        while node not in position:
            position[node] = len(path)
            path.append(node)
            node = deps[node][0]
        return path[position[node]:] + [node]
