"""
Módulo Doctor - Verificación de herramientas, documento y secretos
"""

import os
import socket
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from reposync.config import Settings
from reposync.core.errors import ConfigError, ValidationError
from reposync.core.project.loader import DesiredStateLoader
from reposync.core.project.models import ConnectionType, DesiredState
from reposync.core.project.validator import validate_kinds
from reposync.core.runtime.secrets import SecretStore, references
from reposync.providers import build_adapters

REQUIRED_TOOLS = ["ssh", "git"]


def check_tool(tool_name: str) -> Tuple[bool, Optional[str]]:
    """
    Verifica si una herramienta está instalada y disponible

    Args:
        tool_name: Nombre del comando a verificar

    Returns:
        Tuple (is_available, version_info)
    """
    try:
        result = subprocess.run(["which", tool_name], capture_output=True, text=True, check=False, timeout=2)
    except (OSError, subprocess.SubprocessError):
        return False, None
    if result.returncode != 0:
        return False, None

    # ssh -V escribe la versión en stderr
    flag = "-V" if tool_name == "ssh" else "--version"
    try:
        version = subprocess.run([tool_name, flag], capture_output=True, text=True, timeout=2, check=False)
    except (OSError, subprocess.SubprocessError):
        return True, None
    output = (version.stdout or version.stderr).strip()
    return True, output.split("\n")[0][:50] or None


def check_ssh_keys() -> bool:
    """Verifica si existen claves SSH privadas en ~/.ssh"""
    ssh_dir = Path.home() / ".ssh"
    if not ssh_dir.exists():
        return False
    return any(not f.name.endswith(".pub") for f in ssh_dir.glob("id_*"))


def check_connectivity(host: str, port: int = 22, timeout: int = 3) -> bool:
    """
    Verifica conectividad básica a un host

    Args:
        host: Hostname o IP
        port: Puerto a verificar
        timeout: Timeout en segundos

    Returns:
        True si hay conectividad
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def check_document(path: Path, settings: Settings) -> Tuple[Optional[DesiredState], Optional[str]]:
    """Carga y valida el documento (sin resolver secretos). Devuelve (documento, error)."""
    try:
        document = DesiredStateLoader(path).load()
        validate_kinds(document.resources, build_adapters(settings))
    except (ConfigError, ValidationError) as e:
        return None, str(e)
    return document, None


def check_secrets(document: DesiredState, store: SecretStore) -> Dict[str, bool]:
    """Referencia ${secret:...} → disponible. El valor nunca se muestra."""
    found: Dict[str, bool] = {}
    for spec in document.resources:
        for name in references(spec.desired):
            found[name] = store.has(name)
    return found


def run_doctor(
    console: Console,
    settings: Settings,
    document_path: Path,
    network: bool = False,
    required_tools: Optional[List[str]] = None,
) -> Dict[str, bool]:
    """
    Ejecuta verificación completa (doctor)

    Args:
        console: Console de Rich para salida
        settings: Ajustes de ejecución
        document_path: Ruta a reposync.yaml
        network: Si True, prueba la conexión TCP a cada destino SSH
        required_tools: Lista de herramientas requeridas

    Returns:
        Dict con resultados de verificación
    """
    required_tools = required_tools or REQUIRED_TOOLS
    console.print(Panel.fit("[bold cyan]Doctor - Verificación de RepoSync[/bold cyan]", border_style="cyan"))
    results: Dict[str, bool] = {}

    # Herramientas
    console.print("\n[bold]Herramientas[/bold]")
    tool_table = Table(show_header=True, header_style="bold cyan")
    tool_table.add_column("Herramienta", style="cyan")
    tool_table.add_column("Estado", style="green")
    tool_table.add_column("Versión", style="dim")
    for tool in required_tools:
        available, version = check_tool(tool)
        status = "[green]✔ Disponible[/green]" if available else "[red]✘ No encontrado[/red]"
        tool_table.add_row(tool, status, version or "[dim]N/A[/dim]")
        results[f"tool_{tool}"] = available
    console.print(tool_table)

    # Permisos
    console.print("\n[bold]Permisos[/bold]")
    perm_table = Table(show_header=True, header_style="bold cyan")
    perm_table.add_column("Permiso", style="cyan")
    perm_table.add_column("Estado", style="green")
    for perm_name, has_perm in (("Root", os.geteuid() == 0), ("Ssh Keys", check_ssh_keys())):
        status = "[green]✔ Disponible[/green]" if has_perm else "[yellow]⚠ No disponible[/yellow]"
        perm_table.add_row(perm_name, status)
    console.print(perm_table)

    # Documento
    console.print(f"\n[bold]Documento[/bold] [dim]{document_path}[/dim]")
    document, error = check_document(document_path, settings)
    results["document"] = document is not None
    if document is None:
        console.print(f"[red]✘ {error}[/red]")
    else:
        console.print(
            f"[green]✔ Válido[/green]: {len(document.resources)} recurso(s), {len(document.targets)} destino(s)"
        )
        tags = document.all_tags()
        console.print(f"[dim]Etiquetas: {', '.join(tags) if tags else '(ninguna)'}[/dim]")

        secrets = check_secrets(document, SecretStore(settings.secrets_dir))
        if secrets:
            console.print("\n[bold]Secretos[/bold]")
            secret_table = Table(show_header=True, header_style="bold cyan")
            secret_table.add_column("Secreto", style="cyan")
            secret_table.add_column("Estado", style="green")
            for name, available in secrets.items():
                secret_table.add_row(name, "[green]✔ Disponible[/green]" if available else "[red]✘ Faltante[/red]")
                results[f"secret_{name}"] = available
            console.print(secret_table)

        if network:
            console.print("\n[bold]Destinos[/bold]")
            for name, target in document.targets.items():
                if target.connection == ConnectionType.LOCAL.value:
                    continue
                reachable = check_connectivity(target.host, target.port)
                mark = "[green]✔[/green]" if reachable else "[red]✘[/red]"
                console.print(f"  {mark} {name} ({target.host}:{target.port})")
                results[f"target_{name}"] = reachable

    if all(results.values()):
        console.print("\n[bold green]✅ Todo listo[/bold green]")
    else:
        failed = [key for key, ok in results.items() if not ok]
        console.print(f"\n[yellow]⚠️ Hay verificaciones fallidas:[/yellow] [dim]{', '.join(failed)}[/dim]")
    return results
