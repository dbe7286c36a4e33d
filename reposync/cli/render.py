"""
Salida con rich del StateReport (tabla por recurso + resumen).
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from reposync.core.engine.report import RunOutcome, StateReport
from reposync.core.infra.contracts import Outcome
from reposync.core.project.planner import Plan

OUTCOME_STYLE = {
    Outcome.CONVERGED: "[green]✔ convergido[/green]",
    Outcome.APPLIED: "[cyan]✚ aplicado[/cyan]",
    Outcome.PENDING: "[yellow]~ pendiente[/yellow]",
    Outcome.SKIPPED: "[dim]- omitido[/dim]",
    Outcome.FAILED: "[red]✘ fallido[/red]",
}

RUN_STYLE = {
    RunOutcome.SUCCESS: ("green", "✅ Éxito"),
    RunOutcome.PARTIAL: ("yellow", "⚠️ Parcial"),
    RunOutcome.FAILED: ("red", "❌ Fallido"),
}


def render_report(console: Console, report: StateReport, verbose: bool = False) -> None:
    title = escape(f"Destino: {report.target}") + (" (dry-run)" if report.dry_run else "")

    if report.plan_error:
        console.print(Panel(
            f"[bold red]{escape(report.plan_error_type or '')}[/bold red]: {escape(report.plan_error)}\n\n"
            "[dim]No se tocó el destino.[/dim]",
            title=title,
            border_style="red",
        ))
        return

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Recurso", style="cyan")
    table.add_column("Resultado")
    table.add_column("Detalle", style="dim")
    for result in report.results:
        if result.error:
            detail = f"{result.error_type + ': ' if result.error_type else ''}{result.error}"
        elif result.change_set:
            detail = result.change_set.summary()
        else:
            detail = ""
        if verbose and result.notes:
            detail = "\n".join([detail] + [f"• {note}" for note in result.notes]).strip()
        table.add_row(escape(result.resource_id), OUTCOME_STYLE[result.outcome], escape(detail))
    console.print(table)

    color, label = RUN_STYLE[report.outcome]
    counts = report.counts()
    summary = ", ".join(f"{value} {key}" for key, value in counts.items() if value)
    lines = [f"[bold {color}]{label}[/bold {color}]  [dim]({report.duration:.1f}s)[/dim]", summary or "sin recursos"]
    if report.dry_run:
        lines.append(f"Cambios pendientes: {report.pending_changes}")
    if report.cancelled:
        lines.append("[yellow]Ejecución cancelada:[/yellow] los recursos restantes no se intentaron")
    if report.aborted:
        lines.append(f"[red]Ejecución abortada:[/red] {escape(report.aborted)}")
    console.print(Panel("\n".join(lines), border_style=color))


def render_plan(console: Console, plan: Plan) -> None:
    table = Table(title="Plan de ejecución", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Recurso", style="cyan")
    table.add_column("Depende de", style="yellow")
    table.add_column("Etiquetas", style="dim")
    for i, spec in enumerate(plan, 1):
        deps = ", ".join(spec.depends_on) or "-"
        table.add_row(str(i), escape(spec.id), escape(deps), escape(", ".join(spec.tags)))
    console.print(table)
    if plan.external:
        console.print(f"[dim]Dependencias fuera del filtro (se asumen satisfechas): {escape(', '.join(sorted(plan.external)))}[/dim]")
