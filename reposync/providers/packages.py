"""
Adapter de paquetes base (apt): asegura que una lista de paquetes esté instalada.

Propiedad parcial: solo se instalan los paquetes declarados; nunca se desinstala nada.
"""

from typing import Any, Dict, List, Optional

from reposync.core.errors import ValidationError
from reposync.core.infra.base import BaseAdapter, as_bool, as_list
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.state import ChangeSet, ResourceState, resource_id


class PackagesAdapter(BaseAdapter):
    kind = "packages"
    attributes = frozenset({"installed"})
    parameters = frozenset({"update_cache"})
    required = frozenset({"installed"})

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        packages = as_list(desired.get("installed"))
        if not packages or not all(isinstance(p, str) and p.strip() for p in packages):
            raise ValidationError(f"{resource_id(self.kind, name)}: 'installed' debe ser una lista de nombres")

    def normalize(self, attribute: str, value: Any) -> Any:
        if attribute == "installed":
            return sorted({str(p).strip() for p in as_list(value)})
        return value

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        wanted = self.normalize("installed", desired.get("installed"))
        # dpkg-query sale con 1 si algún paquete no existe; la salida de los demás sigue siendo válida
        result = self.run(
            target,
            ["dpkg-query", "-W", "-f=${Package} ${db:Status-Status}\\n"] + wanted,
            rid,
            check=False,
        )
        if result.exit_code not in (0, 1):
            raise self.command_error(rid, "dpkg-query", result)
        installed = set()
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[1] == "installed":
                installed.add(parts[0].split(":")[0])
        return ResourceState(self.kind, name, observed={"installed": [p for p in wanted if p in installed]})

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        op = change_set.get("installed")
        missing = [p for p in op.to_value if p not in (op.from_value or [])]
        if as_bool(desired.get("update_cache", True)):
            self.run(target, ["apt-get", "update", "-q"], change_set.resource_id)
        self.run(
            target,
            ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "-q", "--no-install-recommends"]
            + missing,
            change_set.resource_id,
        )
        return [f"instalados: {', '.join(missing)}"]
