"""
Adapter de cron: una entrada del crontab de un usuario identificada por un marcador.

    # reposync: <nombre>
    <schedule> <command>

Las demás líneas del crontab no se tocan.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from reposync.core.errors import ValidationError
from reposync.core.infra.base import BaseAdapter, as_bool
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.state import AttributeChange, ChangeSet, ResourceState, resource_id

MARKER = "# reposync: {name}"
_SCHEDULE = re.compile(r"^(@(reboot|yearly|annually|monthly|weekly|daily|hourly)|(\S+\s+){4}\S+)$")


def find_entry(crontab: str, name: str) -> Optional[Tuple[str, str]]:
    """(schedule, command) de la entrada marcada, o None."""
    lines = crontab.splitlines()
    marker = MARKER.format(name=name)
    for i, line in enumerate(lines):
        if line.strip() == marker and i + 1 < len(lines):
            return split_entry(lines[i + 1])
    return None


def split_entry(line: str) -> Tuple[str, str]:
    line = line.strip()
    if line.startswith("@"):
        schedule, _, command = line.partition(" ")
        return schedule, command.strip()
    fields = line.split(None, 5)
    return " ".join(fields[:5]), (fields[5] if len(fields) > 5 else "")


def render_crontab(crontab: str, name: str, entry: Optional[Tuple[str, str]]) -> str:
    """Crontab sin la entrada marcada y, si `entry`, con la entrada al final."""
    marker = MARKER.format(name=name)
    kept: List[str] = []
    skip = False
    for line in crontab.splitlines():
        if skip:
            skip = False
            continue
        if line.strip() == marker:
            skip = True
            continue
        kept.append(line)
    if entry is not None:
        kept += [marker, f"{entry[0]} {entry[1]}"]
    return "\n".join(kept) + "\n" if kept else ""


class CronAdapter(BaseAdapter):
    kind = "cron"
    attributes = frozenset({"schedule", "command", "present"})
    parameters = frozenset({"user"})

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        rid = resource_id(self.kind, name)
        present = as_bool(desired.get("present", True))
        if present is None:
            raise ValidationError(f"{rid}: 'present' debe ser booleano")
        if present:
            for key in ("schedule", "command"):
                if not str(desired.get(key) or "").strip():
                    raise ValidationError(f"{rid}: falta '{key}'")
            if not _SCHEDULE.match(str(desired["schedule"]).strip()):
                raise ValidationError(f"{rid}: schedule inválido '{desired['schedule']}'")
            if "\n" in str(desired["command"]):
                raise ValidationError(f"{rid}: 'command' debe ser una sola línea")

    def normalize(self, attribute: str, value: Any) -> Any:
        if attribute == "present":
            return as_bool(value)
        if attribute == "schedule" and value is not None:
            return " ".join(str(value).split())
        return value if value is None else str(value).strip()

    @staticmethod
    def user(desired: Dict[str, Any]) -> str:
        return str(desired.get("user") or "root")

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        result = self.run(target, ["crontab", "-l", "-u", self.user(desired)], rid, check=False)
        if not result.ok and "no crontab" not in result.stderr.lower():
            raise self.command_error(rid, "crontab -l", result)
        crontab = result.stdout if result.ok else ""
        entry = find_entry(crontab, name)
        observed = {
            "present": entry is not None,
            "schedule": entry[0] if entry else None,
            "command": entry[1] if entry else None,
        }
        return ResourceState(self.kind, name, observed=observed, present=entry is not None, context={"crontab": crontab})

    def diff(self, desired: Dict[str, Any], state: ResourceState) -> ChangeSet:
        if as_bool(desired.get("present", True)) is False:
            if state.present:
                return ChangeSet(state.id, (AttributeChange("present", True, False),))
            return ChangeSet(state.id)
        return super().diff({k: v for k, v in desired.items() if k != "present"}, state)

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        rid = change_set.resource_id
        present = as_bool(desired.get("present", True))
        entry = (self.normalize("schedule", desired["schedule"]), self.normalize("command", desired["command"])) if present else None
        content = render_crontab(state.context.get("crontab", ""), state.name, entry)
        self.run(target, ["crontab", "-u", self.user(desired), "-"], rid, input=content)
        return None
