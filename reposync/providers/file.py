"""
Adapter de archivos gestionados (ej: el script de sincronización de repos).
"""

import hashlib
from pathlib import Path
from typing import Any, Dict, List, Optional

from reposync.core.errors import ValidationError
from reposync.core.infra.base import BaseAdapter, as_bool
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.resolver import project_base
from reposync.core.runtime.state import AttributeChange, ChangeSet, ResourceState, resource_id


def normalize_mode(mode: Any) -> Optional[str]:
    """'0755', 755, '755' → '755'."""
    if mode is None:
        return None
    text = str(mode).strip()
    if text.startswith("0o"):
        text = text[2:]
    return text.lstrip("0") or "0"


class FileAdapter(BaseAdapter):
    kind = "file"
    attributes = frozenset({"content", "mode", "owner", "present"})
    parameters = frozenset({"path", "source"})
    required = frozenset({"path"})

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        rid = resource_id(self.kind, name)
        if not str(desired["path"]).startswith("/"):
            raise ValidationError(f"{rid}: 'path' debe ser absoluto")
        if "content" in desired and "source" in desired:
            raise ValidationError(f"{rid}: usar 'content' o 'source', no ambos")
        # YAML lee 0755 sin comillas como entero octal (493)
        if "mode" in desired and not isinstance(desired["mode"], str):
            raise ValidationError(f"{rid}: 'mode' debe ir entre comillas (ej: \"0755\")")
        if "mode" in desired and not set(normalize_mode(desired["mode"])) <= set("01234567"):
            raise ValidationError(f"{rid}: 'mode' debe ser octal (ej: 0755)")
        if "present" in desired and as_bool(desired["present"]) is None:
            raise ValidationError(f"{rid}: 'present' debe ser booleano")

    def normalize(self, attribute: str, value: Any) -> Any:
        if attribute == "mode":
            return normalize_mode(value)
        if attribute == "present":
            return as_bool(value)
        return value

    @staticmethod
    def source_content(source: str) -> str:
        """`source` es relativo a la raíz del proyecto (el controlador, no el destino)."""
        path = Path(source).expanduser()
        if not path.is_absolute():
            path = (project_base() or Path.cwd()) / path
        try:
            return path.read_text()
        except OSError as e:
            raise ValidationError(f"No se pudo leer '{source}': {e}") from e

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        path = str(desired["path"])
        content = target.fetch_file(path, timeout=self.timeout)
        context = {}
        if "source" in desired:
            context["content"] = self.source_content(str(desired["source"]))
        if content is None:
            observed = {"present": False, "content": None, "mode": None, "owner": None}
            return ResourceState(self.kind, name, observed=observed, present=False, context=context)

        mode, _, owner = self.run(target, ["stat", "-c", "%a %U:%G", path], rid).stdout.strip().partition(" ")
        observed = {"present": True, "content": content, "mode": mode, "owner": owner}
        return ResourceState(self.kind, name, observed=observed, context=context)

    def wanted(self, desired: Dict[str, Any], state: ResourceState) -> Dict[str, Any]:
        wanted = {k: v for k, v in desired.items() if k in self.attributes}
        if "content" in state.context:
            wanted["content"] = state.context["content"]
        return wanted

    def diff(self, desired: Dict[str, Any], state: ResourceState) -> ChangeSet:
        wanted = self.wanted(desired, state)
        if as_bool(wanted.get("present", True)) is False:
            if state.present:
                return ChangeSet(state.id, (AttributeChange("present", True, False),))
            return ChangeSet(state.id)
        ops = []
        if not state.present:
            ops.append(AttributeChange("present", False, True))
        for attribute in ("content", "mode", "owner"):
            if attribute not in wanted:
                continue
            want = self.normalize(attribute, wanted[attribute])
            have = self.normalize(attribute, state.observed.get(attribute))
            if want != have:
                # El contenido completo no va al reporte
                if attribute == "content":
                    ops.append(AttributeChange("content", _digest(have), _digest(want)))
                else:
                    ops.append(AttributeChange(attribute, have, want))
        return ChangeSet(state.id, tuple(ops))

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        rid = change_set.resource_id
        path = str(desired["path"])
        wanted = self.wanted(desired, state)

        if as_bool(wanted.get("present", True)) is False:
            self.run(target, ["rm", "-f", "--", path], rid)
            return [f"eliminado: {path}"]

        mode = wanted.get("mode")
        owner = wanted.get("owner")
        if change_set.get("content") or change_set.get("present"):
            content = wanted.get("content")
            if content is None:
                content = state.observed.get("content") or ""
            target.push_file(path, content, mode=mode and str(mode), owner=owner, timeout=self.timeout)
            return None
        if change_set.get("mode"):
            self.run(target, ["chmod", str(mode), path], rid)
        if change_set.get("owner"):
            self.run(target, ["chown", str(owner), path], rid)
        return None


def _digest(content: Optional[str]) -> Optional[str]:
    if content is None:
        return None
    return f"sha256:{hashlib.sha256(content.encode()).hexdigest()[:12]} ({len(content.splitlines())} líneas)"
