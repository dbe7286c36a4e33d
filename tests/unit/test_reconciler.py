"""Tests for the Reconciler: state machine, containment, dry-run, retries, cancellation."""

import json
import logging

from reposync.core.engine import Reconciler, ResourcePhase, RetryPolicy, RunOutcome
from reposync.core.engine.report import EXIT_FAILED, EXIT_PARTIAL, EXIT_PLAN_FAILED, EXIT_SUCCESS
from reposync.core.infra.contracts import Outcome
from reposync.core.runtime.secrets import SecretStore, redact
from reposync.core.runtime.state import MASK

from support import MemoryAdapter, hardening_document, spec

DEVICE_ID = "ABCDEFG-HIJKLMN-OPQRSTU-VWXYZ23-4567ABC-DEFGHIJ-KLMNOPQ-RSTUVWX"


def make_reconciler(host, target, no_sleep=None, **kwargs):
    sleeps = no_sleep if no_sleep is not None else []
    return Reconciler(target, host.adapters, sleep=sleeps.append, **kwargs)


def outcomes(report):
    return [(r.resource_id, r.outcome) for r in report.results]


class TestHardeningScenario:
    def test_firewall_failure_skips_ssh(self, host, target):
        host.adapters["firewall"].fail_on.add("firewall/ufw")
        report = make_reconciler(host, target).reconcile(hardening_document())

        assert outcomes(report) == [("firewall/ufw", Outcome.FAILED), ("sshd/main", Outcome.SKIPPED)]
        assert report.outcome == RunOutcome.FAILED
        assert report.exit_code == EXIT_FAILED
        # the dependent is never read
        assert "sshd/main" not in host.reads()
        assert report.result("firewall/ufw").error_type == "ApplyFailed"

    def test_first_run_applies_then_second_run_is_converged(self, host, target):
        first = make_reconciler(host, target).reconcile(hardening_document())
        assert outcomes(first) == [("firewall/ufw", Outcome.APPLIED), ("sshd/main", Outcome.APPLIED)]
        assert first.outcome == RunOutcome.SUCCESS

        host.journal.clear()
        second = make_reconciler(host, target).reconcile(hardening_document())
        assert outcomes(second) == [("firewall/ufw", Outcome.CONVERGED), ("sshd/main", Outcome.CONVERGED)]
        assert second.outcome == RunOutcome.SUCCESS
        assert second.exit_code == EXIT_SUCCESS
        assert host.applied() == []
        assert second.change_log == []


class TestContainment:
    def test_failure_only_skips_dependents(self, host, target):
        specs = [
            spec("packages", "base"),
            spec("firewall", "ufw"),
            spec("sshd", "main", depends_on=["firewall/ufw"]),
            spec("service", "sshguard", depends_on=["sshd/main"]),
            spec("syncthing", "main", depends_on=["packages/base"]),
        ]
        host.adapters["firewall"].fail_on.add("firewall/ufw")
        report = make_reconciler(host, target).reconcile(specs)

        assert report.result("packages/base").outcome == Outcome.APPLIED
        assert report.result("syncthing/main").outcome == Outcome.APPLIED
        assert report.result("firewall/ufw").outcome == Outcome.FAILED
        assert report.result("sshd/main").outcome == Outcome.SKIPPED
        assert report.result("service/sshguard").outcome == Outcome.SKIPPED
        assert report.outcome == RunOutcome.PARTIAL
        assert report.exit_code == EXIT_PARTIAL

    def test_results_follow_plan_order(self, host, target):
        specs = [spec("sshd", "main", depends_on=["firewall/ufw"]), spec("firewall", "ufw")]
        report = make_reconciler(host, target).reconcile(specs)
        assert report.plan == ("firewall/ufw", "sshd/main")
        assert [r.resource_id for r in report.results] == list(report.plan)

    def test_apply_that_does_not_converge_fails(self, host, target):
        host.adapters["packages"].broken.add("packages/base")
        report = make_reconciler(host, target).reconcile([spec("packages", "base")])
        result = report.result("packages/base")
        assert result.outcome == Outcome.FAILED
        assert "no convergió" in result.error

    def test_verification_can_be_disabled(self, host, target):
        host.adapters["packages"].broken.add("packages/base")
        reconciler = make_reconciler(host, target, verify_after_apply=False)
        report = reconciler.reconcile([spec("packages", "base")])
        assert report.result("packages/base").outcome == Outcome.APPLIED


    def test_unexpected_adapter_error_is_contained(self, host, target):
        specs = [
            spec("packages", "base"),
            spec("service", "sshguard", depends_on=["packages/base"]),
            spec("syncthing", "main"),
        ]
        host.adapters["packages"].crash_on["packages/base"] = UnicodeDecodeError(
            "utf-8", b"\xff", 0, 1, "invalid start byte"
        )
        report = make_reconciler(host, target).reconcile(specs)

        failed = report.result("packages/base")
        assert failed.outcome == Outcome.FAILED
        assert failed.error_type == "UnicodeDecodeError"
        assert "invalid start byte" in failed.error
        assert report.result("service/sshguard").outcome == Outcome.SKIPPED
        assert report.result("syncthing/main").outcome == Outcome.APPLIED
        assert report.exit_code == EXIT_PARTIAL


class TestDryRun:
    def test_dry_run_reports_pending_without_applying(self, host, target):
        report = make_reconciler(host, target).reconcile(hardening_document(), dry_run=True)
        assert outcomes(report) == [("firewall/ufw", Outcome.PENDING), ("sshd/main", Outcome.PENDING)]
        assert host.applied() == []
        assert host.world == {}
        assert report.dry_run
        assert report.pending_changes == 4

    def test_dry_run_predicts_what_apply_changes(self, host, target):
        dry = make_reconciler(host, target).reconcile(hardening_document(), dry_run=True)
        real = make_reconciler(host, target).reconcile(hardening_document())
        for predicted, applied in zip(dry.results, real.results):
            assert predicted.change_set.operations == applied.change_set.operations

    def test_dry_run_on_converged_target_has_zero_changes(self, host, target):
        make_reconciler(host, target).reconcile(hardening_document())
        report = make_reconciler(host, target).reconcile(hardening_document(), dry_run=True)
        assert report.pending_changes == 0
        assert all(r.outcome == Outcome.CONVERGED for r in report.results)


class TestPreflight:
    def test_cycle_fails_before_any_read(self, host, target):
        specs = [spec("firewall", "ufw", depends_on=["sshd/main"]), spec("sshd", "main", depends_on=["firewall/ufw"])]
        report = make_reconciler(host, target).reconcile(specs)
        assert report.plan_error_type == "CycleDetected"
        assert report.exit_code == EXIT_PLAN_FAILED
        assert report.results == ()
        assert host.journal == []

    def test_unknown_kind_fails_before_any_read(self, host, target):
        report = make_reconciler(host, target).reconcile([spec("firewall", "ufw"), spec("nginx", "site")])
        assert report.plan_error_type == "ValidationError"
        assert "nginx" in report.plan_error
        assert host.journal == []

    def test_missing_secret_fails_before_any_read(self, host, target, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        specs = [spec("packages", "base", {"token": "${secret:github_token}"})]
        report = make_reconciler(host, target, secrets=SecretStore(values={})).reconcile(specs)
        assert report.plan_error_type == "ValidationError"
        assert host.journal == []


class TestRetries:
    def test_read_is_retried_with_backoff(self, host, target, no_sleep):
        host.adapters["packages"].unreachable["packages/base"] = 2
        reconciler = make_reconciler(host, target, no_sleep, retry=RetryPolicy(retries=2, base=1.0, cap=30.0))
        report = reconciler.reconcile([spec("packages", "base")])
        assert report.result("packages/base").outcome == Outcome.APPLIED
        assert no_sleep == [1.0, 2.0]

    def test_retries_are_bounded(self, host, target, no_sleep):
        host.adapters["packages"].unreachable["packages/base"] = 10
        reconciler = make_reconciler(host, target, no_sleep, retry=RetryPolicy(retries=2))
        report = reconciler.reconcile([spec("packages", "base")])
        result = report.result("packages/base")
        assert result.outcome == Outcome.FAILED
        assert result.error_type == "TargetUnreachable"
        assert host.reads().count("packages/base") == 3

    def test_apply_retry_rereads_before_reapplying(self, host, target, no_sleep):
        host.adapters["packages"].apply_unreachable["packages/base"] = 1
        report = make_reconciler(host, target, no_sleep).reconcile([spec("packages", "base")])
        assert report.result("packages/base").outcome == Outcome.APPLIED
        assert [step for step, rid in host.journal] == ["read", "apply", "read", "apply", "read"]

    def test_backoff_is_capped(self):
        policy = RetryPolicy(retries=10, base=1.0, cap=5.0)
        assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestAbortAndCancel:
    def test_invariant_violation_aborts_the_run(self, host, target):
        specs = [spec("firewall", "ufw"), spec("packages", "base"), spec("service", "sshguard")]
        host.adapters["firewall"].invariant_on.add("firewall/ufw")
        report = make_reconciler(host, target).reconcile(specs)

        assert report.result("firewall/ufw").outcome == Outcome.FAILED
        assert report.result("firewall/ufw").error_type == "AdapterInvariantViolation"
        assert report.result("packages/base").outcome == Outcome.SKIPPED
        assert report.result("service/sshguard").outcome == Outcome.SKIPPED
        assert "abortada" in report.result("packages/base").error
        assert report.aborted
        assert report.outcome == RunOutcome.FAILED
        assert host.reads() == ["firewall/ufw"]

    def test_cancellation_is_checked_between_entries(self, host, target, cancel):
        specs = [spec("packages", "base"), spec("service", "sshguard"), spec("syncthing", "main")]

        def observer(rid, phase):
            if rid == "packages/base" and phase == ResourcePhase.APPLYING:
                cancel.set()

        reconciler = make_reconciler(host, target, observer=observer)
        report = reconciler.reconcile(specs, cancel=cancel)
        # the in-flight apply completes; the rest are skipped
        assert report.result("packages/base").outcome == Outcome.APPLIED
        assert report.result("service/sshguard").outcome == Outcome.SKIPPED
        assert report.result("syncthing/main").outcome == Outcome.SKIPPED
        assert report.result("syncthing/main").error == "cancelado"
        assert report.cancelled

    def test_cancelled_before_the_first_resource_is_partial(self, host, target, cancel):
        cancel.set()
        report = make_reconciler(host, target).reconcile([spec("packages", "base")], cancel=cancel)
        assert report.result("packages/base").outcome == Outcome.SKIPPED
        assert host.reads() == []
        assert report.cancelled
        assert report.outcome == RunOutcome.PARTIAL
        assert report.exit_code == EXIT_PARTIAL


class TestPhases:
    def test_phase_transitions_are_observed_in_order(self, host, target):
        seen = []
        reconciler = make_reconciler(host, target, observer=lambda rid, phase: seen.append(phase))
        reconciler.reconcile([spec("packages", "base")])
        assert seen == [
            ResourcePhase.READING,
            ResourcePhase.DIFFING,
            ResourcePhase.APPLYING,
            ResourcePhase.APPLIED,
        ]
        assert reconciler.phases == {"packages/base": ResourcePhase.APPLIED}


class TestSecrets:
    def test_secret_values_reach_the_adapter_but_not_the_report(self, host, target):
        store = SecretStore(values={"sync_token": "ghp_supersecret"})
        specs = [spec("syncthing", "main", {"token": "${secret:sync_token}", "path": "/srv"})]
        report = make_reconciler(host, target, secrets=store).reconcile(specs)

        assert host.adapters["syncthing"].seen_desired[0]["token"] == "ghp_supersecret"
        result = report.result("syncthing/main")
        token_change = result.change_set.get("token")
        assert token_change.sensitive
        assert token_change.to_value == MASK
        assert "ghp_supersecret" not in " ".join(report.change_log)
        assert "ghp_supersecret" not in str(report.to_dict())
        assert result.change_set.get("path").to_value == "/srv"

    def test_secret_is_masked_in_dry_run(self, host, target):
        store = SecretStore(values={"sync_token": "ghp_supersecret"})
        specs = [spec("syncthing", "main", {"token": "${secret:sync_token}"})]
        report = make_reconciler(host, target, secrets=store).reconcile(specs, dry_run=True)
        assert "ghp_supersecret" not in " ".join(report.change_log)
        assert MASK in report.change_log[0]


class DeviceAdapter(MemoryAdapter):
    """Puts each resolved device on the command line, as the syncthing CLI does."""

    def _apply(self, target, change_set, desired, state):
        for device in json.loads(desired["devices"]):
            self.run(
                target,
                ["syncthing", "cli", "config", "devices", "add", "--device-id", device["id"], "--name", device["name"]],
                change_set.resource_id,
            )
        return None


class TestSecretRedaction:
    def test_secret_values_never_reach_logs_or_errors(self, host, target, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("reposync"), "propagate", True)
        caplog.set_level(logging.DEBUG, logger="reposync")
        host.adapters["syncthing"] = DeviceAdapter("syncthing", host.world, host.journal)
        target.on(r"^syncthing cli ", stderr=f"error: device {DEVICE_ID} rejected\n", exit_code=1)
        store = SecretStore(values={"devs": json.dumps([{"name": "laptop", "id": DEVICE_ID}])})

        specs = [spec("syncthing", "main", {"devices": "${secret:devs}"})]
        report = make_reconciler(host, target, secrets=store).reconcile(specs)

        result = report.result("syncthing/main")
        assert result.outcome == Outcome.FAILED
        assert "--device-id" in result.error
        assert MASK in result.error
        # the target still received the real value
        assert any(DEVICE_ID in command for command in target.commands)
        for text in (json.dumps(report.to_dict()), caplog.text):
            assert DEVICE_ID not in text
            assert "laptop" not in text

    def test_redaction_scope_ends_with_the_resource(self, host, target):
        store = SecretStore(values={"token": "ghp_supersecret"})
        seen = []
        reconciler = make_reconciler(
            host, target, secrets=store, observer=lambda rid, phase: seen.append(redact("ghp_supersecret"))
        )
        reconciler.reconcile([spec("syncthing", "main", {"token": "${secret:token}"})])
        assert seen[0] == MASK
        assert redact("ghp_supersecret") == "ghp_supersecret"
