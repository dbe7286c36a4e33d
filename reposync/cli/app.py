"""
Aplicación CLI de RepoSync.

Solo compone comandos; la lógica vive en core, providers y transport.
Códigos de salida: 0 éxito, 1 parcial, 2 plan/configuración inválida, 3 fallido.
"""

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel

from reposync import __version__
from reposync.cli.devices import app as devices_app
from reposync.cli.doctor import run_doctor
from reposync.cli.render import render_plan, render_report
from reposync.cli.runner import cancel_on_interrupt, run_document, split_csv, worst_exit_code
from reposync.config import Settings, load_settings
from reposync.core.engine.report import EXIT_PLAN_FAILED
from reposync.core.errors import ConfigError, CycleDetected, ReposyncError, ValidationError
from reposync.core.project.loader import DesiredStateLoader
from reposync.core.project.planner import Planner
from reposync.observability.logging import setup_logging

app = typer.Typer(
    name="reposync",
    help="RepoSync - Control Plane declarativo: hardening SSH/firewall, Syncthing y espejo de repos GitHub",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

app.add_typer(devices_app, name="devices", help="Dispositivos de Syncthing (list / add)")


def _settings(verbose: bool = False) -> Settings:
    try:
        settings = load_settings(log_level="debug" if verbose else None)
    except ConfigError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(EXIT_PLAN_FAILED)
    setup_logging(settings.log_level)
    return settings


def run_apply(
    settings: Settings,
    document_path: Path,
    dry_run: bool = False,
    limit: Optional[str] = None,
    local: bool = False,
    tags: Optional[List[str]] = None,
    skip_tags: Optional[List[str]] = None,
    verbose: bool = False,
    json_output: bool = False,
) -> int:
    """Carga el documento, reconcilia los destinos y muestra el reporte. Devuelve el exit code."""
    try:
        loader = DesiredStateLoader(document_path)
        document = loader.load()
        with cancel_on_interrupt() as cancel:
            reports = run_document(
                settings,
                document,
                dry_run=dry_run,
                limit=limit,
                local=local,
                tags=tags,
                skip_tags=skip_tags,
                cancel=cancel,
                loader=loader,
            )
    except (ConfigError, ValidationError) as e:
        if json_output:
            typer.echo(json.dumps({"error": str(e), "error_type": type(e).__name__}))
        else:
            console.print(Panel(f"[bold red]{type(e).__name__}[/bold red]: {e}", border_style="red"))
        return EXIT_PLAN_FAILED

    if json_output:
        typer.echo(json.dumps([r.to_dict() for r in reports], indent=2, ensure_ascii=False))
    else:
        for report in reports:
            render_report(console, report, verbose=verbose)
            if verbose and report.change_log:
                console.print("[bold]Cambios:[/bold]")
                for line in report.change_log:
                    console.print(f"  [dim]{line}[/dim]")
    return worst_exit_code(reports)


@app.command()
def apply(
    check: bool = typer.Option(False, "--check", "-C", help="Dry-run: leer y comparar sin aplicar"),
    limit: Optional[str] = typer.Option(None, "--limit", "-l", help="Solo este destino del documento"),
    local: bool = typer.Option(False, "--local", help="Aplicar en esta máquina"),
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Solo recursos con estas etiquetas (a,b)"),
    skip: Optional[str] = typer.Option(None, "--skip", "-s", help="Omitir recursos con estas etiquetas (a,b)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log de depuración y detalle de cambios"),
    json_output: bool = typer.Option(False, "--json", help="Reporte en JSON"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Documento de estado deseado"),
):
    """Reconcilia los destinos con el documento de estado deseado"""
    settings = _settings(verbose)
    code = run_apply(
        settings,
        file or settings.document,
        dry_run=check,
        limit=limit,
        local=local,
        tags=split_csv(tags),
        skip_tags=split_csv(skip),
        verbose=verbose,
        json_output=json_output,
    )
    raise typer.Exit(code)


@app.command()
def plan(
    limit: Optional[str] = typer.Option(None, "--limit", "-l", help="Solo este destino del documento"),
    local: bool = typer.Option(False, "--local", help="Comparar contra esta máquina"),
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Solo recursos con estas etiquetas (a,b)"),
    skip: Optional[str] = typer.Option(None, "--skip", "-s", help="Omitir recursos con estas etiquetas (a,b)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log de depuración"),
    json_output: bool = typer.Option(False, "--json", help="Reporte en JSON"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Documento de estado deseado"),
):
    """Muestra los cambios que 'apply' haría (equivale a apply --check)"""
    settings = _settings(verbose)
    code = run_apply(
        settings,
        file or settings.document,
        dry_run=True,
        limit=limit,
        local=local,
        tags=split_csv(tags),
        skip_tags=split_csv(skip),
        verbose=verbose,
        json_output=json_output,
    )
    raise typer.Exit(code)


@app.command()
def graph(
    tags: Optional[str] = typer.Option(None, "--tags", "-t", help="Solo recursos con estas etiquetas (a,b)"),
    skip: Optional[str] = typer.Option(None, "--skip", "-s", help="Omitir recursos con estas etiquetas (a,b)"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Documento de estado deseado"),
):
    """Muestra el orden de ejecución (sin contactar destinos)"""
    settings = _settings()
    try:
        document = DesiredStateLoader(file or settings.document).load()
        execution = Planner().plan(document.resources, tags=split_csv(tags), skip_tags=split_csv(skip))
    except (ConfigError, ValidationError, CycleDetected) as e:
        console.print(f"[red]❌ {type(e).__name__}: {e}[/red]")
        raise typer.Exit(EXIT_PLAN_FAILED)
    render_plan(console, execution)


@app.command()
def doctor(
    network: bool = typer.Option(False, "--network", "-n", help="Probar conexión TCP a cada destino"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Documento de estado deseado"),
):
    """Verifica herramientas, documento, etiquetas y secretos"""
    settings = _settings()
    try:
        results = run_doctor(console, settings, file or settings.document, network=network)
    except ReposyncError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(EXIT_PLAN_FAILED)
    raise typer.Exit(0 if all(results.values()) else 1)


@app.command()
def version():
    """Muestra la versión de RepoSync"""
    console.print(Panel.fit(
        "[bold cyan]RepoSync[/bold cyan]\n"
        "[dim]Control Plane declarativo para hardening y sincronización de un host[/dim]\n\n"
        f"[bold]Versión:[/bold] {__version__}",
        border_style="cyan"
    ))


def main():
    app()
