"""
Comandos 'devices': gestionar los dispositivos del recurso syncthing del documento.

Si la lista vive en un secreto (`devices: ${secret:nombre}`), se edita el archivo
del secreto en el directorio de secretos; si no, el propio reposync.yaml.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from reposync.config import Settings, load_settings
from reposync.core.errors import ConfigError, ReposyncError
from reposync.core.project.loader import DesiredStateLoader
from reposync.core.runtime.secrets import SECRET_REF, SecretStore
from reposync.providers.syncthing import is_valid_device_id, parse_devices

app = typer.Typer(help="Dispositivos de Syncthing", no_args_is_help=True)
console = Console()


def find_syncthing(data: Dict[str, Any], resource: Optional[str] = None) -> Dict[str, Any]:
    """Entrada cruda del recurso syncthing (el primero, o el de nombre `resource`)."""
    for entry in data.get("resources") or []:
        if entry.get("kind") == "syncthing" and (resource is None or entry.get("name") == resource):
            return entry
    label = f"syncthing/{resource}" if resource else "de kind 'syncthing'"
    raise ConfigError(f"El documento no tiene un recurso {label}")


def secret_name(value: Any) -> Optional[str]:
    """Nombre del secreto si el valor es exactamente una referencia ${secret:nombre}."""
    if isinstance(value, str):
        match = SECRET_REF.fullmatch(value.strip())
        if match:
            return match.group(1)
    return None


def read_devices(entry: Dict[str, Any], settings: Settings) -> Tuple[List[Dict[str, str]], Optional[str]]:
    """(dispositivos, nombre del secreto o None)."""
    value = (entry.get("desired") or {}).get("devices")
    name = secret_name(value)
    if name is None:
        return parse_devices(value), None
    store = SecretStore(settings.secrets_dir)
    if not store.has(name):
        return [], name
    return parse_devices(store.get(name)), name


def write_secret_devices(settings: Settings, name: str, devices: List[Dict[str, str]]) -> Path:
    """Escribe la lista en <secrets_dir>/<nombre> con permisos 600."""
    path = settings.secrets_dir / name
    if not path.exists() and os.environ.get(name.upper().replace("-", "_")):
        raise ConfigError(f"El secreto '{name}' viene de una variable de entorno; edítalo allí")
    settings.secrets_dir.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(devices) + "\n")
    path.chmod(0o600)
    return path


def add_device(
    document_path: Path,
    settings: Settings,
    name: str,
    device_id: str,
    resource: Optional[str] = None,
) -> bool:
    """
    Agrega un dispositivo. Devuelve False si el ID ya estaba (no-op).
    """
    loader = DesiredStateLoader(document_path)
    data = loader.load_raw()
    entry = find_syncthing(data, resource)
    devices, secret = read_devices(entry, settings)
    device_id = device_id.strip().upper()
    if any(d["id"] == device_id for d in devices):
        return False
    devices.append({"name": name, "id": device_id})
    if secret:
        write_secret_devices(settings, secret, devices)
    else:
        entry.setdefault("desired", {})["devices"] = devices
        loader.save_raw(data)
    return True


def _print_devices(devices: List[Dict[str, str]], source: str) -> None:
    table = Table(title=f"Dispositivos de Syncthing ({source})", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Nombre", style="cyan")
    table.add_column("Device ID", style="green")
    for i, device in enumerate(devices, 1):
        table.add_row(str(i), device["name"], device["id"])
    if devices:
        console.print(table)
    else:
        console.print("  [dim](sin dispositivos configurados)[/dim]")


@app.command("list")
def list_devices(
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Documento de estado deseado"),
    resource: Optional[str] = typer.Option(None, "--resource", "-r", help="Nombre del recurso syncthing"),
):
    """Lista los dispositivos configurados"""
    try:
        settings = load_settings()
        entry = find_syncthing(DesiredStateLoader(file or settings.document).load_raw(), resource)
        devices, secret = read_devices(entry, settings)
    except ReposyncError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(2)
    _print_devices(devices, f"secreto '{secret}'" if secret else "documento")


@app.command("add")
def add(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Nombre del dispositivo (ej: macbook)"),
    device_id: Optional[str] = typer.Option(None, "--id", "-i", help="Device ID ('syncthing --device-id')"),
    apply_changes: bool = typer.Option(False, "--apply", "-a", help="Aplicar el recurso syncthing después"),
    local: bool = typer.Option(False, "--local", help="Aplicar en esta máquina"),
    limit: Optional[str] = typer.Option(None, "--limit", "-l", help="Destino del documento"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Documento de estado deseado"),
    resource: Optional[str] = typer.Option(None, "--resource", "-r", help="Nombre del recurso syncthing"),
):
    """Agrega un dispositivo y, opcionalmente, aplica el cambio"""
    if not name:
        name = typer.prompt("Nombre del dispositivo (ej: windows-pc, macbook)").strip()
    if not device_id:
        console.print("[dim]El Device ID se obtiene con 'syncthing --device-id' en el dispositivo[/dim]")
        device_id = typer.prompt("Device ID").strip()
    if not name or not device_id:
        console.print("[red]❌ Nombre y Device ID son obligatorios[/red]")
        raise typer.Exit(2)

    if not is_valid_device_id(device_id):
        console.print("[yellow]⚠️ El formato del Device ID es inusual. Esperado: XXXXXXX-XXXXXXX-... (8 grupos)[/yellow]")
        if not typer.confirm("¿Continuar de todos modos?", default=False):
            raise typer.Exit(1)

    try:
        settings = load_settings()
        path = file or settings.document
        added = add_device(path, settings, name, device_id, resource)
        devices, secret = read_devices(find_syncthing(DesiredStateLoader(path).load_raw(), resource), settings)
    except ReposyncError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(2)

    if added:
        console.print(f"[green]✅ Dispositivo agregado: {name}[/green]")
    else:
        console.print(f"[yellow]⚠️ El dispositivo {device_id.upper()} ya estaba configurado[/yellow]")
    _print_devices(devices, f"secreto '{secret}'" if secret else "documento")

    code = 0
    if not apply_changes:
        apply_changes = typer.confirm("¿Aplicar cambios ahora?", default=False)
    if apply_changes:
        from reposync.cli.app import run_apply

        code = run_apply(settings, path, dry_run=False, limit=limit, local=local, tags=["syncthing"])

    console.print("\n[bold]Próximos pasos en el nuevo dispositivo:[/bold]")
    console.print("  1. Abrir la GUI de Syncthing")
    console.print("  2. Agregar este servidor como dispositivo remoto con su Device ID")
    console.print("  3. Aceptar la carpeta compartida cuando aparezca")
    raise typer.Exit(code)
