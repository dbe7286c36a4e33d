"""
Adapter de Syncthing: dispositivos remotos y carpetas compartidas.

Propiedad parcial y aditiva: solo se comparan los dispositivos y carpetas
declarados; lo que Syncthing tenga además no se toca. La lista de dispositivos
puede venir de un secreto (JSON) para no dejar los IDs en el documento.
"""

import json
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

from reposync.core.errors import ApplyFailed, ValidationError
from reposync.core.infra.base import BaseAdapter, as_list
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.secrets import SECRET_REF
from reposync.core.runtime.state import AttributeChange, ChangeSet, ResourceState, resource_id

DEFAULT_USER = "syncthing"
DEFAULT_HOME = "/home/{user}/.local/state/syncthing"

# XXXXXXX-XXXXXXX-XXXXXXX-XXXXXXX-XXXXXXX-XXXXXXX-XXXXXXX-XXXXXXX
DEVICE_ID = re.compile(r"^[A-Z0-9]{7}(-[A-Z0-9]{7}){7}$")
_LOOSE_DEVICE_ID = re.compile(r"^[A-Z0-9-]+$")


def is_valid_device_id(device_id: str) -> bool:
    """Formato canónico de un Device ID (8 grupos de 7 caracteres)."""
    return bool(DEVICE_ID.match(device_id.strip().upper()))


def parse_devices(value: Any) -> List[Dict[str, str]]:
    """Lista de dispositivos {name, id}; acepta un string JSON (valor de un secreto)."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValidationError(f"'devices' no es una lista JSON válida: {e}") from e
    devices = []
    for item in as_list(value):
        if not isinstance(item, dict) or not item.get("id"):
            raise ValidationError("Cada dispositivo debe tener al menos 'id' (y opcionalmente 'name')")
        device_id = str(item["id"]).strip().upper()
        devices.append({"id": device_id, "name": str(item.get("name") or device_id[:7])})
    return devices


def parse_config(content: str) -> Dict[str, Any]:
    """config.xml → {'devices': {id: name}, 'folders': {id: {'path', 'devices'}}}."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ApplyFailed(f"config.xml de Syncthing ilegible: {e}") from e
    devices = {d.get("id"): d.get("name") or "" for d in root.findall("device")}
    folders = {}
    for folder in root.findall("folder"):
        folders[folder.get("id")] = {
            "path": folder.get("path"),
            "label": folder.get("label"),
            "devices": sorted(d.get("id") for d in folder.findall("device")),
        }
    return {"devices": devices, "folders": folders}


class SyncthingAdapter(BaseAdapter):
    kind = "syncthing"
    attributes = frozenset({"devices", "folders"})
    parameters = frozenset({"user", "home"})

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        rid = resource_id(self.kind, name)
        devices = desired.get("devices")
        # Con un secreto el contenido se valida al resolverse
        if not (isinstance(devices, str) and SECRET_REF.search(devices)):
            for device in parse_devices(devices):
                if not _LOOSE_DEVICE_ID.match(device["id"]):
                    raise ValidationError(f"{rid}: Device ID inválido '{device['id']}'")
        for folder in as_list(desired.get("folders")):
            if not isinstance(folder, dict) or not folder.get("id") or not folder.get("path"):
                raise ValidationError(f"{rid}: cada carpeta necesita 'id' y 'path'")
            if not str(folder["path"]).startswith("/"):
                raise ValidationError(f"{rid}: la ruta de '{folder['id']}' debe ser absoluta")

    @staticmethod
    def home(desired: Dict[str, Any]) -> str:
        user = desired.get("user") or DEFAULT_USER
        return str(desired.get("home") or DEFAULT_HOME.format(user=user)).rstrip("/")

    # ------------------------------------------------------------------
    # Formas canónicas para el diff
    # ------------------------------------------------------------------

    @staticmethod
    def _device_lines(devices: List[Dict[str, str]]) -> List[str]:
        return sorted(f"{d['name']} ({d['id']})" for d in devices)

    def _folder_lines(self, folders: List[Dict[str, Any]], devices: List[Dict[str, str]]) -> List[str]:
        by_name = {d["name"]: d["id"] for d in devices}
        lines = []
        for folder in folders:
            shared = sorted({by_name.get(str(d), str(d).upper()) for d in as_list(folder.get("devices"))})
            lines.append(f"{folder['id']}:{folder['path']} <- {', '.join(shared) or '-'}")
        return sorted(lines)

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        home = self.home(desired)
        content = target.fetch_file(f"{home}/config.xml", timeout=self.timeout)
        config = parse_config(content) if content is not None else {"devices": {}, "folders": {}}
        wanted_devices = parse_devices(desired.get("devices"))
        wanted_folders = [f for f in as_list(desired.get("folders")) if isinstance(f, dict)]

        observed: Dict[str, Any] = {}
        if "devices" in desired:
            observed["devices"] = [
                {"id": d["id"], "name": config["devices"][d["id"]]}
                for d in wanted_devices
                if d["id"] in config["devices"]
            ]
        if "folders" in desired:
            by_name = {d["name"]: d["id"] for d in wanted_devices}
            folders = []
            for folder in wanted_folders:
                actual = config["folders"].get(folder["id"])
                if actual is None:
                    continue
                declared = {by_name.get(str(d), str(d).upper()) for d in as_list(folder.get("devices"))}
                folders.append({
                    "id": folder["id"],
                    "path": actual["path"],
                    "devices": sorted(declared & set(actual["devices"])),
                })
            observed["folders"] = folders
        return ResourceState(
            self.kind, name, observed=observed, present=content is not None, context={"config": config}
        )

    def diff(self, desired: Dict[str, Any], state: ResourceState) -> ChangeSet:
        devices = parse_devices(desired.get("devices"))
        ops = []
        if "devices" in desired:
            want = self._device_lines(devices)
            have = self._device_lines(state.observed.get("devices") or [])
            if want != have:
                ops.append(AttributeChange("devices", have, want))
        if "folders" in desired:
            want = self._folder_lines(as_list(desired["folders"]), devices)
            have = self._folder_lines(state.observed.get("folders") or [], devices)
            if want != have:
                ops.append(AttributeChange("folders", have, want))
        return ChangeSet(state.id, tuple(ops))

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        rid = change_set.resource_id
        if not state.present:
            raise ApplyFailed(
                f"No existe {self.home(desired)}/config.xml: el servicio de Syncthing debe iniciarse antes", rid
            )
        config = state.context["config"]
        devices = parse_devices(desired.get("devices"))
        notes: List[str] = []

        for device in devices:
            current = config["devices"].get(device["id"])
            if current is None:
                self.cli(target, desired, rid, "devices", "add", "--device-id", device["id"], "--name", device["name"])
                notes.append(f"dispositivo agregado: {device['name']}")
            elif current != device["name"]:
                self.cli(target, desired, rid, "devices", device["id"], "name", "set", device["name"])

        by_name = {d["name"]: d["id"] for d in devices}
        for folder in as_list(desired.get("folders")):
            current = config["folders"].get(folder["id"])
            if current is None:
                args = ["folders", "add", "--id", folder["id"], "--path", folder["path"]]
                if folder.get("label"):
                    args += ["--label", str(folder["label"])]
                self.cli(target, desired, rid, *args)
                notes.append(f"carpeta agregada: {folder['id']}")
                shared = set()
            else:
                if current["path"] != folder["path"]:
                    self.cli(target, desired, rid, "folders", folder["id"], "path", "set", folder["path"])
                shared = set(current["devices"])
            for device in as_list(folder.get("devices")):
                device_id = by_name.get(str(device), str(device).upper())
                if device_id not in shared:
                    self.cli(target, desired, rid, "folders", folder["id"], "devices", "add", "--device-id", device_id)
        return notes

    def cli(self, target: TargetHandle, desired: Dict[str, Any], rid: str, *args: str) -> None:
        """`syncthing cli config ...` como el usuario del servicio (requiere el daemon activo)."""
        user = str(desired.get("user") or DEFAULT_USER)
        command = ["runuser", "-u", user, "--", "syncthing", "cli", "--home", self.home(desired), "config", *args]
        self.run(target, command, rid)
