"""Test doubles shared by unit and integration tests.

Provides an in-memory target handle with scripted command handlers and an
in-memory adapter so engine tests can exercise full reconciliation runs
without touching a real host.
"""

import re
import shlex
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from reposync.core.errors import AdapterInvariantViolation, ApplyFailed, TargetUnreachable
from reposync.core.infra.base import BaseAdapter
from reposync.core.infra.contracts import CommandResult
from reposync.core.project.models import ResourceSpec
from reposync.core.runtime.state import ChangeSet, ResourceState, resource_id
from reposync.providers.firewall import rule_covers

Handler = Union[CommandResult, Callable[[str, Optional[str]], CommandResult]]


# ---------------------------------------------------------------------------
# Target handle
# ---------------------------------------------------------------------------


class FakeTarget:
    """TargetHandle in memory.

    Commands are matched against registered regex handlers (latest wins);
    unmatched commands succeed with empty output. Every interaction is
    appended to ``events`` so tests can assert ordering.
    """

    def __init__(
        self,
        name: str = "vps",
        port: int = 22,
        open_ports: Optional[set] = None,
        key_access: bool = True,
    ):
        self.name = name
        self.port = port
        self.files: Dict[str, str] = {}
        self.open_ports = set(open_ports if open_ports is not None else {port})
        self.key_access = key_access
        self.events: List[Tuple[str, Any]] = []
        self._handlers: List[Tuple[re.Pattern, Handler]] = []

    @property
    def access_port(self) -> int:
        return self.port

    @property
    def commands(self) -> List[str]:
        return [value for kind, value in self.events if kind == "exec"]

    def on(self, pattern: str, stdout: str = "", stderr: str = "", exit_code: int = 0, fn=None) -> None:
        handler: Handler = fn if fn is not None else CommandResult(stdout, stderr, exit_code)
        self._handlers.insert(0, (re.compile(pattern), handler))

    def execute(self, command: str, input: Optional[str] = None, timeout: Optional[float] = None) -> CommandResult:
        self.events.append(("exec", command))
        for pattern, handler in self._handlers:
            if pattern.search(command):
                return handler(command, input) if callable(handler) else handler
        return CommandResult("", "", 0)

    def fetch_file(self, path: str, timeout: Optional[float] = None) -> Optional[str]:
        self.events.append(("fetch", path))
        return self.files.get(path)

    def push_file(self, path, content, mode=None, owner=None, timeout=None) -> None:
        self.events.append(("push", path))
        self.files[path] = content

    def probe(self, port: int, timeout: float = 5.0) -> bool:
        self.events.append(("probe", port))
        return port in self.open_ports

    def verify_key_access(self, port: int, timeout: float = 10.0) -> bool:
        self.events.append(("verify_key", port))
        return self.key_access and port in self.open_ports

    def switch_port(self, port: int) -> None:
        self.events.append(("switch", port))
        self.port = port


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------


class MemoryAdapter(BaseAdapter):
    """Adapter whose 'host' is a dict shared across kinds.

    ``world[rid]`` holds the observed attributes. Failure knobs:
    ``fail_on`` (ApplyFailed), ``invariant_on`` (AdapterInvariantViolation),
    ``unreachable`` (rid → number of reads that raise TargetUnreachable),
    ``apply_unreachable`` (rid → number of applies that raise TargetUnreachable),
    ``broken`` (apply reports success but changes nothing),
    ``crash_on`` (rid → arbitrary exception raised by read).
    """

    def __init__(self, kind: str, world: Dict[str, Dict[str, Any]], journal: List[Tuple[str, str]], **kwargs):
        super().__init__(**kwargs)
        self.kind = kind
        self.world = world
        self.journal = journal
        self.fail_on: set = set()
        self.invariant_on: set = set()
        self.broken: set = set()
        self.unreachable: Dict[str, int] = {}
        self.apply_unreachable: Dict[str, int] = {}
        self.seen_desired: List[Dict[str, Any]] = []
        self.crash_on: Dict[str, Exception] = {}

    def read(self, target, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        self.journal.append(("read", rid))
        self.seen_desired.append(dict(desired))
        if rid in self.crash_on:
            raise self.crash_on[rid]
        if self.unreachable.get(rid, 0) > 0:
            self.unreachable[rid] -= 1
            raise TargetUnreachable("connection refused", rid)
        return ResourceState(self.kind, name, observed=dict(self.world.get(rid, {})))

    def _apply(self, target, change_set: ChangeSet, desired, state) -> Optional[List[str]]:
        rid = change_set.resource_id
        self.journal.append(("apply", rid))
        if rid in self.invariant_on:
            raise AdapterInvariantViolation("revoking live access path", rid)
        if rid in self.fail_on:
            raise ApplyFailed("apply exploded", rid, diagnostic="exit 1")
        if self.apply_unreachable.get(rid, 0) > 0:
            self.apply_unreachable[rid] -= 1
            raise TargetUnreachable("connection reset", rid)
        if rid not in self.broken:
            self.world.setdefault(rid, {}).update({op.attribute: op.to_value for op in change_set})
        return None


class Host:
    """World + journal + adapters for a set of kinds."""

    def __init__(self, kinds=("firewall", "sshd", "service", "packages", "syncthing")):
        self.world: Dict[str, Dict[str, Any]] = {}
        self.journal: List[Tuple[str, str]] = []
        self.adapters = {kind: MemoryAdapter(kind, self.world, self.journal) for kind in kinds}

    def applied(self) -> List[str]:
        return [rid for step, rid in self.journal if step == "apply"]

    def reads(self) -> List[str]:
        return [rid for step, rid in self.journal if step == "read"]


def spec(kind: str, name: str, desired=None, depends_on=None, tags=None) -> ResourceSpec:
    """Create a ResourceSpec with sensible defaults for testing."""
    return ResourceSpec(
        kind=kind,
        name=name,
        desired=desired if desired is not None else {"value": name},
        depends_on=depends_on or [],
        tags=tags or [],
    )


def hardening_document() -> List[ResourceSpec]:
    """The canonical VPS scenario: firewall first, then SSH."""
    return [
        spec("firewall", "ufw", {"enabled": True, "allow": ["2222/tcp"]}, tags=["firewall"]),
        spec("sshd", "main", {"port": 2222, "password_authentication": False}, ["firewall/ufw"], tags=["ssh"]),
    ]




# ---------------------------------------------------------------------------
# Simulated host for the access-path adapters
# ---------------------------------------------------------------------------


class SimulatedHost:
    """Scripts ``target`` to behave like a Debian host running sshd and ufw.

    sshd listens on the ports of the managed drop-in (or 22) after each
    reload; a port is reachable when sshd listens on it and ufw lets it
    through. ``target.open_ports`` is recomputed after every command.
    """

    BASE_SSHD = {
        "port": ["22"],
        "passwordauthentication": ["yes"],
        "pubkeyauthentication": ["yes"],
        "permitrootlogin": ["prohibit-password"],
        "x11forwarding": ["yes"],
    }

    def __init__(self, target: FakeTarget, dropin: str = "/etc/ssh/sshd_config.d/00-reposync.conf"):
        self.target = target
        self.dropin = dropin
        self.sshd_valid = True
        self.listening = {22}
        self.ufw_installed = True
        self.ufw_active = False
        self.rules: List[str] = []
        self.policies = {"incoming": "DROP", "outgoing": "ACCEPT"}
        self.profiles: Dict[str, List[str]] = {"OpenSSH": ["22/tcp"]}
        self._write_defaults()

        target.on(r"^sshd -T$", fn=lambda c, i: CommandResult(self.sshd_t(), "", 0))
        target.on(r"^sshd -t$", fn=self._sshd_check)
        target.on(r"^systemctl list-unit-files ssh\.service", "ssh.service enabled enabled\n")
        target.on(r"^systemctl reload ", fn=self._reload)
        target.on(r"^rm -f ", fn=self._rm)
        target.on(r"^command -v ufw$", fn=lambda c, i: CommandResult("/usr/sbin/ufw\n", "", 0 if self.ufw_installed else 1))
        target.on(r"^ufw status verbose$", fn=self._status)
        target.on(r"^ufw show added$", fn=self._added)
        target.on(r"^ufw allow ", fn=self._allow)
        target.on(r"^ufw delete allow ", fn=self._delete)
        target.on(r"^ufw --force (enable|disable)$", fn=self._toggle)
        target.on(r"^ufw default ", fn=self._default)
        target.on(r"^ufw app info ", fn=self._app_info)
        target.on(r"apt-get install .*\bufw\b", fn=self._install_ufw)
        self.refresh()

    # sshd -------------------------------------------------------------

    def effective(self) -> Dict[str, List[str]]:
        values = {k: list(v) for k, v in self.BASE_SSHD.items()}
        seen = set()
        for line in (self.target.files.get(self.dropin) or "").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            key, _, value = line.partition(" ")
            key = key.lower()
            if key == "port":
                if "port" not in seen:
                    values["port"] = []
                values["port"].append(value)
            elif key not in seen:
                values[key] = [value]
            seen.add(key)
        return values

    def sshd_t(self) -> str:
        return "".join(f"{key} {value}\n" for key, values in self.effective().items() for value in values)

    def _sshd_check(self, command, input):
        if self.sshd_valid:
            return CommandResult("", "", 0)
        return CommandResult("", f"{self.dropin} line 2: Bad configuration option\n", 255)

    def _reload(self, command, input):
        self.listening = {int(p) for p in self.effective()["port"]}
        return self.refresh()

    def _rm(self, command, input):
        self.target.files.pop(command.split()[-1], None)
        return self.refresh()

    # ufw --------------------------------------------------------------

    def _write_defaults(self) -> None:
        self.target.files["/etc/default/ufw"] = (
            f'DEFAULT_INPUT_POLICY="{self.policies["incoming"]}"\n'
            f'DEFAULT_OUTPUT_POLICY="{self.policies["outgoing"]}"\n'
        )

    def _status(self, command, input):
        return CommandResult(f"Status: {'active' if self.ufw_active else 'inactive'}\n", "", 0)

    def _added(self, command, input):
        if not self.rules:
            return CommandResult("Added user rules (see 'ufw status' for running firewall):\n(None)\n", "", 0)
        lines = "".join(f"ufw allow {rule}\n" for rule in self.rules)
        return CommandResult(f"Added user rules (see 'ufw status' for running firewall):\n{lines}", "", 0)

    @staticmethod
    def _rule(command: str) -> str:
        words = shlex.split(command)
        return " ".join(words[words.index("allow") + 1:])

    def _app_info(self, command, input):
        name = " ".join(shlex.split(command)[3:])
        if name not in self.profiles:
            return CommandResult("", f"ERROR: Could not find a profile matching '{name}'\n", 1)
        ports = "".join(f"  {rule}\n" for rule in self.profiles[name])
        return CommandResult(f"Profile: {name}\nTitle: {name}\n\nPort:\n{ports}", "", 0)

    def _allow(self, command, input):
        rule = self._rule(command)
        if rule not in self.rules:
            self.rules.append(rule)
        return self.refresh()

    def _delete(self, command, input):
        rule = self._rule(command)
        if rule in self.rules:
            self.rules.remove(rule)
        return self.refresh()

    def _toggle(self, command, input):
        self.ufw_active = command.endswith("enable")
        return self.refresh()

    def _default(self, command, input):
        _, _, policy, direction = command.split()
        self.policies[direction] = {"allow": "ACCEPT", "deny": "DROP", "reject": "REJECT"}[policy]
        self._write_defaults()
        return self.refresh()

    def _install_ufw(self, command, input):
        self.ufw_installed = True
        return self.refresh()

    def allows(self, port: int) -> bool:
        if not self.ufw_active or self.policies["incoming"] == "ACCEPT":
            return True
        return any(rule_covers(rule, port, self.profiles) for rule in self.rules)

    def refresh(self) -> CommandResult:
        self.target.open_ports = {port for port in self.listening if self.allows(port)}
        return CommandResult("", "", 0)
