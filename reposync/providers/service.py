"""
Adapter de servicios systemd (ej: SSHGuard): enabled / active.
"""

from typing import Any, Dict, List, Optional

from reposync.core.errors import ValidationError
from reposync.core.infra.base import BaseAdapter, as_bool
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.state import ChangeSet, ResourceState, resource_id


class ServiceAdapter(BaseAdapter):
    kind = "service"
    attributes = frozenset({"enabled", "active"})
    parameters = frozenset({"unit", "package"})

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        for key in ("enabled", "active"):
            if key in desired and as_bool(desired[key]) is None:
                raise ValidationError(f"{resource_id(self.kind, name)}: '{key}' debe ser booleano")

    def normalize(self, attribute: str, value: Any) -> Any:
        return as_bool(value) if attribute in self.attributes else value

    @staticmethod
    def unit(name: str, desired: Dict[str, Any]) -> str:
        return str(desired.get("unit") or name)

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        unit = self.unit(name, desired)
        enabled = self.run(target, ["systemctl", "is-enabled", unit], rid, check=False)
        active = self.run(target, ["systemctl", "is-active", unit], rid, check=False)
        present = "no such file" not in enabled.stderr.lower() and "not-found" not in enabled.stdout
        return ResourceState(
            self.kind,
            name,
            observed={
                "enabled": enabled.stdout.strip() in ("enabled", "enabled-runtime", "alias"),
                "active": active.stdout.strip() in ("active", "reloading", "activating"),
            },
            present=present,
        )

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        rid = change_set.resource_id
        unit = self.unit(state.name, desired)
        notes: List[str] = []
        enable = change_set.get("enabled")
        active = change_set.get("active")
        turning_on = (enable and enable.to_value) or (active and active.to_value)

        if turning_on and not state.present and desired.get("package"):
            self.run(
                target,
                ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "-q", str(desired["package"])],
                rid,
            )
            notes.append(f"paquete instalado: {desired['package']}")

        # Apagar: stop antes de disable. Encender: enable antes de start.
        if active and not active.to_value:
            self.run(target, ["systemctl", "stop", unit], rid)
        if enable is not None:
            self.run(target, ["systemctl", "enable" if enable.to_value else "disable", unit], rid)
        if active and active.to_value:
            self.run(target, ["systemctl", "start", unit], rid)
        return notes
