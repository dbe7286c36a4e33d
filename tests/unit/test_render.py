"""Tests for the rich rendering of reports and plans."""

from rich.console import Console

from reposync.cli.render import render_plan, render_report
from reposync.core.engine.report import StateReport
from reposync.core.infra.contracts import ExecutionResult, Outcome
from reposync.core.project.planner import Planner

from support import spec


def console():
    return Console(record=True, width=200, color_system=None)


def report(*results, **kwargs):
    return StateReport(
        target="vps",
        results=tuple(results),
        plan=tuple(r.resource_id for r in results),
        duration=0.5,
        **kwargs,
    )


class TestMarkupInData:
    def test_error_text_is_printed_literally(self):
        out = console()
        failed = ExecutionResult(
            "packages/base",
            Outcome.FAILED,
            error="E: [bold]dpkg[/bold] lock [/] held",
            error_type="ApplyFailed",
        )
        render_report(out, report(failed))
        text = out.export_text()
        assert "E: [bold]dpkg[/bold] lock [/] held" in text

    def test_notes_and_aborted_text_are_printed_literally(self):
        out = console()
        applied = ExecutionResult("firewall/ufw", Outcome.APPLIED, notes=("regla [red]80/tcp[/red]",))
        render_report(out, report(applied, aborted="firewall/ufw: [link]x[/link]"), verbose=True)
        text = out.export_text()
        assert "regla [red]80/tcp[/red]" in text
        assert "[link]x[/link]" in text

    def test_plan_error_is_printed_literally(self):
        out = console()
        render_report(out, report(plan_error="recurso [b]desconocido[/b]", plan_error_type="ValidationError"))
        assert "recurso [b]desconocido[/b]" in out.export_text()

    def test_plan_tags_are_printed_literally(self):
        out = console()
        plan = Planner().plan([spec("packages", "base", tags=["[ops]"])])
        render_plan(out, plan)
        assert "[ops]" in out.export_text()


class TestCancelled:
    def test_cancelled_run_is_flagged(self):
        out = console()
        skipped = ExecutionResult("packages/base", Outcome.SKIPPED, error="cancelado")
        render_report(out, report(skipped, cancelled=True))
        text = out.export_text()
        assert "Parcial" in text
        assert "Ejecución cancelada" in text
