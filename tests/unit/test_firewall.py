"""Tests for the UFW adapter: parsing, access-port protection and add-before-revoke ordering."""

import pytest

from reposync.core.errors import AdapterInvariantViolation, ApplyFailed, ValidationError
from reposync.core.infra.contracts import Outcome
from reposync.providers.firewall import (
    FirewallAdapter,
    parse_added_rules,
    parse_app_ports,
    parse_defaults,
    rule_covers,
)

from support import SimulatedHost


@pytest.fixture
def adapter():
    return FirewallAdapter(probe_attempts=2, probe_delay=0.0, sleep=lambda s: None)


@pytest.fixture
def sim(target):
    return SimulatedHost(target)


def converge(adapter, target, desired):
    state = adapter.read(target, "ufw", desired)
    change_set = adapter.diff(desired, state)
    return adapter.apply(target, change_set, desired, state)


def position(commands, command):
    return commands.index(command)


class TestParsing:
    @pytest.mark.parametrize("rule,port,covered", [
        ("22/tcp", 22, True),
        ("22", 22, True),
        ("22/udp", 22, False),
        ("2200:2300/tcp", 2222, True),
        ("2200:2300/tcp", 22, False),
        ("openssh", 22, False),
    ])
    def test_rule_covers(self, rule, port, covered):
        assert rule_covers(rule, port) is covered

    @pytest.mark.parametrize("rule,port,covered", [
        ("OpenSSH", 22, True),
        ("OpenSSH", 2222, False),
        ("from 203.0.113.5 to any port 22 proto tcp", 22, True),
        ("from 203.0.113.5 to any port 22 proto udp", 22, False),
        ("from 203.0.113.5", 22, False),
    ])
    def test_rule_covers_profiles_and_extended_rules(self, rule, port, covered):
        assert rule_covers(rule, port, {"OpenSSH": ["22/tcp"]}) is covered

    def test_parse_app_ports(self):
        output = "Profile: Nginx Full\nTitle: Web Server\n\nPorts:\n  80,443/tcp\n  60000:61000/udp\n"
        assert parse_app_ports(output) == ["80/tcp", "443/tcp", "60000:61000/udp"]

    def test_parse_added_rules_keeps_profile_names(self):
        output = "ufw allow OpenSSH\nufw allow from 203.0.113.5 to any port 22\nufw allow 22/TCP\n"
        assert parse_added_rules(output) == ["OpenSSH", "from 203.0.113.5 to any port 22", "22/tcp"]

    def test_parse_added_rules(self):
        output = (
            "Added user rules (see 'ufw status' for running firewall):\n"
            "ufw allow 22/tcp\n"
            "ufw allow 22000\n"
            "ufw deny 23\n"
        )
        assert parse_added_rules(output) == ["22/tcp", "22000"]

    def test_parse_defaults(self):
        content = 'IPV6=yes\nDEFAULT_INPUT_POLICY="DROP"\nDEFAULT_OUTPUT_POLICY="ACCEPT"\n'
        assert parse_defaults(content) == {"default_incoming": "deny", "default_outgoing": "allow"}
        assert parse_defaults(None) == {"default_incoming": None, "default_outgoing": None}


class TestValidation:
    @pytest.mark.parametrize("desired,fragment", [
        ({"enabled": "quizás"}, "booleano"),
        ({"default_incoming": "drop"}, "default_incoming"),
        ({"allow": ["ssh"]}, "regla inválida"),
        ({"allow": ["70000/tcp"]}, "regla inválida"),
        ({"deny": ["23"]}, "desconocidos"),
    ])
    def test_invalid(self, adapter, desired, fragment):
        with pytest.raises(ValidationError, match=fragment):
            adapter.validate("ufw", desired)


class TestRead:
    def test_read_active_firewall(self, adapter, sim, target):
        sim.ufw_active = True
        sim.rules = ["22/tcp", "22000"]
        state = adapter.read(target, "ufw", {"enabled": True})
        assert state.observed == {
            "enabled": True,
            "allow": ["22/tcp", "22000"],
            "default_incoming": "deny",
            "default_outgoing": "allow",
        }
        assert state.context["access_port"] == 22

    def test_read_without_ufw(self, adapter, sim, target):
        sim.ufw_installed = False
        state = adapter.read(target, "ufw", {"enabled": True})
        assert not state.present
        assert state.observed["enabled"] is False
        assert "ufw status verbose" not in target.commands


class TestAccessPortProtection:
    def test_rule_for_live_access_port_is_kept(self, adapter, sim, target):
        sim.rules = ["22/tcp"]
        desired = {"enabled": True, "allow": ["2222/tcp"]}
        state = adapter.read(target, "ufw", desired)
        change_set = adapter.diff(desired, state)
        assert change_set.get("allow").to_value == ["22/tcp", "2222/tcp"]

        result = adapter.apply(target, change_set, desired, state)
        assert result.outcome == Outcome.APPLIED
        assert sim.rules == ["22/tcp", "2222/tcp"]
        assert sim.ufw_active
        assert "ufw delete allow 22/tcp" not in target.commands
        assert any("22/tcp" in note for note in result.notes)

    def test_rules_are_added_and_verified_before_enabling(self, adapter, sim, target):
        sim.rules = ["22/tcp"]
        converge(adapter, target, {"enabled": True, "allow": ["2222/tcp", "22000/tcp"]})
        commands = target.commands
        enable = position(commands, "ufw --force enable")
        assert position(commands, "ufw allow 2222/tcp") < enable
        assert position(commands, "ufw allow 22000/tcp") < enable
        # a verification read happens between the additions and the enable
        assert commands.index("ufw show added", position(commands, "ufw allow 22000/tcp")) < enable
        assert ("probe", 22) in target.events

    def test_old_rule_is_revoked_once_access_moved(self, adapter, sim, target):
        sim.ufw_active = True
        sim.rules = ["22/tcp", "2222/tcp"]
        sim.listening = {2222}
        target.port = 2222
        sim.refresh()

        result = converge(adapter, target, {"enabled": True, "allow": ["2222/tcp"]})
        assert result.outcome == Outcome.APPLIED
        assert sim.rules == ["2222/tcp"]
        commands = target.commands
        assert target.events.index(("probe", 2222)) < target.events.index(("exec", "ufw delete allow 22/tcp"))
        assert "ufw --force enable" not in commands

    def test_enabling_deny_without_access_rule_is_an_invariant_violation(self, adapter, sim, target):
        with pytest.raises(AdapterInvariantViolation, match="puerto de acceso 22"):
            converge(adapter, target, {"enabled": True, "allow": ["2222/tcp"]})
        assert not sim.ufw_active
        assert sim.rules == []
        assert not any(c.startswith("ufw allow") for c in target.commands)

    def test_missing_ufw_counts_as_default_deny(self, adapter, sim, target):
        sim.ufw_installed = False
        with pytest.raises(AdapterInvariantViolation, match="puerto de acceso 22"):
            converge(adapter, target, {"enabled": True, "allow": ["80/tcp"]})
        assert not sim.ufw_installed
        assert not sim.ufw_active
        assert not any("apt-get" in c or c.startswith("ufw") for c in target.commands)

    def test_app_profile_covers_the_access_port(self, adapter, sim, target):
        sim.rules = ["OpenSSH"]
        result = converge(adapter, target, {"enabled": True, "allow": ["80/tcp"]})
        assert result.outcome == Outcome.APPLIED
        assert sim.ufw_active
        assert sim.rules == ["OpenSSH", "80/tcp"]
        assert "ufw app info OpenSSH" in target.commands
        assert not any(c.startswith("ufw delete") for c in target.commands)
        assert any("OpenSSH" in note for note in result.notes)

    def test_extended_rules_are_left_alone(self, adapter, sim, target):
        extended = "from 203.0.113.5 to any port 8080 proto tcp"
        sim.ufw_active = True
        sim.rules = ["22/tcp", extended, "9000/tcp"]
        sim.refresh()
        desired = {"enabled": True, "allow": ["22/tcp"]}

        result = converge(adapter, target, desired)
        assert result.outcome == Outcome.APPLIED
        assert sim.rules == ["22/tcp", extended]
        assert [c for c in target.commands if c.startswith("ufw delete")] == ["ufw delete allow 9000/tcp"]
        assert adapter.diff(desired, adapter.read(target, "ufw", desired)).is_empty

    def test_allow_incoming_default_needs_no_access_rule(self, adapter, sim, target):
        result = converge(adapter, target, {"enabled": True, "default_incoming": "allow", "allow": ["2222/tcp"]})
        assert result.outcome == Outcome.APPLIED
        assert sim.policies["incoming"] == "ACCEPT"

    def test_unreachable_access_port_disables_firewall_again(self, adapter, sim, target):
        sim.rules = ["22/udp"]
        # the rule list claims coverage but the probe never answers
        target.on(r"^ufw show added$", "ufw allow 22/tcp\nufw allow 2222/tcp\n")
        sim.allows = lambda port: not sim.ufw_active

        with pytest.raises(ApplyFailed, match="firewall deshabilitado"):
            converge(adapter, target, {"enabled": True, "allow": ["22/tcp", "2222/tcp"]})
        assert not sim.ufw_active
        assert target.commands[-1] == "ufw --force disable"


class TestDisable:
    def test_disable_removes_rules_after_disabling(self, adapter, sim, target):
        sim.ufw_active = True
        sim.rules = ["22/tcp", "8080/tcp"]
        sim.refresh()
        result = converge(adapter, target, {"enabled": False, "allow": []})
        assert result.outcome == Outcome.APPLIED
        assert not sim.ufw_active
        commands = target.commands
        assert position(commands, "ufw --force disable") < position(commands, "ufw delete allow 8080/tcp")
        # the rule covering the live access port stays
        assert sim.rules == ["22/tcp"]

    def test_installs_ufw_when_missing(self, adapter, sim, target):
        sim.ufw_installed = False
        sim.rules = []
        result = converge(adapter, target, {"enabled": True, "allow": ["22/tcp"]})
        assert "paquete instalado: ufw" in result.notes
        assert sim.ufw_active

    def test_converged_firewall_has_empty_diff(self, adapter, sim, target):
        sim.ufw_active = True
        sim.rules = ["22/tcp"]
        desired = {"enabled": "yes", "allow": ["22/TCP"], "default_incoming": "deny"}
        state = adapter.read(target, "ufw", desired)
        assert adapter.diff(desired, state).is_empty
