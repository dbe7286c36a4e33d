"""
Adapter de firewall UFW: enabled, default_incoming, default_outgoing, allow.

`allow` es el conjunto exacto de reglas simples deseadas (puerto[:puerto][/proto]),
con dos excepciones:
- la regla que cubre el puerto de acceso vivo nunca se revoca; se conserva hasta
  que una ejecución posterior acceda por otro puerto.
- las reglas que no son simples (perfiles de aplicación como OpenSSH, reglas con
  `from ...`) no se gestionan: se conservan tal cual.
"""

import re
import shlex
from typing import Any, Dict, List, Mapping, Optional, Set

from reposync.core.errors import AdapterInvariantViolation, ApplyFailed, ValidationError
from reposync.core.infra.base import BaseAdapter, as_bool, as_list
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.state import AttributeChange, ChangeSet, ResourceState, resource_id
from reposync.observability.logging import get_logger

logger = get_logger("providers.firewall")

UFW_DEFAULTS = "/etc/default/ufw"
POLICIES = ("allow", "deny", "reject")
# Política entrante con la que se instala UFW en Debian/Ubuntu
UFW_DEFAULT_INCOMING = "deny"
_IPTABLES_POLICY = {"ACCEPT": "allow", "DROP": "deny", "REJECT": "reject"}
_RULE = re.compile(r"^(\d{1,5})(?::(\d{1,5}))?(?:/(tcp|udp))?$")
_PORT_CLAUSE = re.compile(r"\bport (\d{1,5}(?::\d{1,5})?)")
_PROTO_CLAUSE = re.compile(r"\bproto (tcp|udp)\b")
_EXTENDED = re.compile(r"\b(from|to|port|proto|on|in|out)\b")


def normalize_rule(rule: Any) -> str:
    """Reglas simples en minúsculas; el resto (perfiles, reglas extendidas) sin tocar."""
    text = " ".join(str(rule).split())
    return text.lower() if _RULE.match(text.lower()) else text


def is_simple(rule: str) -> bool:
    return bool(_RULE.match(rule))


def expand_rule(rule: str, profiles: Optional[Mapping[str, List[str]]] = None) -> List[str]:
    """Regla → reglas simples equivalentes (perfil de aplicación o cláusula 'port')."""
    if is_simple(rule):
        return [rule]
    if profiles and rule in profiles:
        return list(profiles[rule])
    port = _PORT_CLAUSE.search(rule)
    if port:
        proto = _PROTO_CLAUSE.search(rule)
        return [port.group(1) + (f"/{proto.group(1)}" if proto else "")]
    return []


def rule_covers(rule: str, port: int, profiles: Optional[Mapping[str, List[str]]] = None) -> bool:
    """¿La regla permite conexiones TCP entrantes al puerto?"""
    for simple in expand_rule(rule, profiles):
        match = _RULE.match(simple)
        if not match:
            continue
        low = int(match.group(1))
        high = int(match.group(2) or low)
        if low <= port <= high and match.group(3) in (None, "tcp"):
            return True
    return False


def parse_added_rules(output: str) -> List[str]:
    """Salida de `ufw show added` → reglas allow ('22/tcp', 'OpenSSH', ...)."""
    rules = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("ufw allow "):
            rules.append(normalize_rule(line[len("ufw allow "):]))
    return rules


def parse_app_ports(output: str) -> List[str]:
    """Salida de `ufw app info NOMBRE` → reglas simples ('22/tcp', '80', ...)."""
    rules: List[str] = []
    in_ports = False
    for line in output.splitlines():
        stripped = line.strip()
        if stripped in ("Port:", "Ports:"):
            in_ports = True
            continue
        if not in_ports or not stripped:
            continue
        ports, _, proto = stripped.partition("/")
        for item in ports.split(","):
            rule = item.strip() + (f"/{proto.strip()}" if proto else "")
            if is_simple(rule.lower()):
                rules.append(rule.lower())
    return rules


def parse_defaults(content: Optional[str]) -> Dict[str, Optional[str]]:
    values = {"default_incoming": None, "default_outgoing": None}
    for line in (content or "").splitlines():
        key, _, value = line.partition("=")
        policy = _IPTABLES_POLICY.get(value.strip().strip('"'))
        if key.strip() == "DEFAULT_INPUT_POLICY":
            values["default_incoming"] = policy
        elif key.strip() == "DEFAULT_OUTPUT_POLICY":
            values["default_outgoing"] = policy
    return values


def is_profile(rule: str) -> bool:
    """¿Es el nombre de un perfil de aplicación (OpenSSH, 'Nginx Full')?"""
    return not is_simple(rule) and not _EXTENDED.search(rule)


class FirewallAdapter(BaseAdapter):
    kind = "firewall"
    access_path = True
    attributes = frozenset({"enabled", "default_incoming", "default_outgoing", "allow"})

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        rid = resource_id(self.kind, name)
        if "enabled" in desired and as_bool(desired["enabled"]) is None:
            raise ValidationError(f"{rid}: 'enabled' debe ser booleano")
        for key in ("default_incoming", "default_outgoing"):
            if key in desired and str(desired[key]).lower() not in POLICIES:
                raise ValidationError(f"{rid}: '{key}' debe ser uno de {', '.join(POLICIES)}")
        for rule in as_list(desired.get("allow")):
            match = _RULE.match(normalize_rule(rule))
            if not match or int(match.group(1)) > 65535 or int(match.group(2) or 0) > 65535:
                raise ValidationError(f"{rid}: regla inválida '{rule}' (formato: puerto[:puerto][/tcp|udp])")

    def normalize(self, attribute: str, value: Any) -> Any:
        if attribute == "enabled":
            return as_bool(value)
        if attribute == "allow":
            return sorted({normalize_rule(r) for r in as_list(value)})
        if value is None:
            return None
        return str(value).lower()

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        installed = self.run(target, "command -v ufw", rid, check=False).ok
        context: Dict[str, Any] = {"access_port": target.access_port, "profiles": {}}
        if not installed:
            observed = {"enabled": False, "allow": [], "default_incoming": None, "default_outgoing": None}
            return ResourceState(self.kind, name, observed=observed, present=False, context=context)

        status = self.run(target, ["ufw", "status", "verbose"], rid).stdout
        added = self.run(target, ["ufw", "show", "added"], rid).stdout
        observed = {
            "enabled": "status: active" in status.lower(),
            "allow": parse_added_rules(added),
        }
        observed.update(parse_defaults(target.fetch_file(UFW_DEFAULTS, timeout=self.timeout)))
        for rule in observed["allow"]:
            if is_profile(rule):
                info = self.run(target, ["ufw", "app", "info", rule], rid, check=False)
                context["profiles"][rule] = parse_app_ports(info.stdout) if info.ok else []
        return ResourceState(self.kind, name, observed=observed, context=context)

    def effective_rules(self, desired: Dict[str, Any], state: ResourceState) -> List[str]:
        """
        Reglas deseadas más las existentes que cubren el puerto de acceso vivo
        y las que no son reglas simples (no gestionadas).
        """
        rules = set(self.normalize("allow", desired.get("allow")))
        port = state.context.get("access_port")
        profiles = state.context.get("profiles")
        for rule in self.normalize("allow", state.observed.get("allow")):
            if not is_simple(rule) or (port is not None and rule_covers(rule, port, profiles)):
                rules.add(rule)
        return sorted(rules)

    def diff(self, desired: Dict[str, Any], state: ResourceState) -> ChangeSet:
        change_set = super().diff(desired, state)
        if "allow" not in desired:
            return change_set
        want = self.effective_rules(desired, state)
        have = self.normalize("allow", state.observed.get("allow"))
        ops = [op for op in change_set if op.attribute != "allow"]
        if want != have:
            ops.append(AttributeChange("allow", have, want))
        return ChangeSet(change_set.resource_id, tuple(ops))

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        rid = change_set.resource_id
        access_port = target.access_port
        profiles = state.context.get("profiles")
        notes: List[str] = []

        have: Set[str] = set(self.normalize("allow", state.observed.get("allow")))
        want: Set[str] = set(self.effective_rules(desired, state)) if "allow" in desired else set(have)
        enabled = self.normalize("enabled", desired.get("enabled", state.observed.get("enabled")))
        incoming = self.normalize("default_incoming", desired.get("default_incoming", state.observed.get("default_incoming")))
        # Sin /etc/default/ufw (o sin ufw instalado) rige la política con la que se instala
        incoming = incoming or UFW_DEFAULT_INCOMING

        # Antes de tocar nada: un firewall activo que bloquea por defecto debe dejar pasar el acceso vivo
        if enabled and incoming in ("deny", "reject") and not any(rule_covers(r, access_port, profiles) for r in want):
            raise AdapterInvariantViolation(
                f"Activar UFW con '{incoming}' entrante sin regla para el puerto de acceso {access_port}",
                rid,
            )

        if not state.present:
            self.run(target, ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "-q", "ufw"], rid)
            notes.append("paquete instalado: ufw")

        guard = self.guard(rid)
        to_add = sorted(want - have)
        to_remove = sorted(have - want)
        enabling = enabled and not state.observed.get("enabled")

        def commit() -> None:
            for rule in to_add:
                self.run(target, ["ufw", "allow"] + shlex.split(rule), rid)
            if to_add:
                added = set(parse_added_rules(self.run(target, ["ufw", "show", "added"], rid).stdout))
                missing = [r for r in to_add if r not in added]
                if missing:
                    raise ApplyFailed(f"Reglas no registradas por ufw: {', '.join(missing)}", rid)
            for key, direction in (("default_incoming", "incoming"), ("default_outgoing", "outgoing")):
                if change_set.get(key):
                    self.run(target, ["ufw", "default", self.normalize(key, desired[key]), direction], rid)
            if enabling:
                self.run(target, ["ufw", "--force", "enable"], rid)

        def delete(rule: str) -> None:
            self.run(target, ["ufw", "delete", "allow"] + shlex.split(rule), rid)

        guard.commit(commit)

        if not enabled:
            # Firewall inactivo: borrar reglas no afecta el camino de acceso
            if state.observed.get("enabled"):
                self.run(target, ["ufw", "--force", "disable"], rid)
            for rule in to_remove:
                delete(rule)
            return notes

        if not guard.verify(lambda: target.probe(access_port), attempts=self.probe_attempts, delay=self.probe_delay):
            logger.warning("%s: puerto de acceso %s sin respuesta tras el commit", rid, access_port)
            if enabling:
                self.run(target, ["ufw", "--force", "disable"], rid)
            raise ApplyFailed(
                f"El puerto de acceso {access_port} no responde con el firewall activo"
                + ("; firewall deshabilitado" if enabling else ""),
                rid,
            )

        if to_remove:
            def revoke() -> None:
                for rule in to_remove:
                    delete(rule)

            guard.revoke(revoke)

        extra = want - set(self.normalize("allow", desired.get("allow")))
        kept = sorted(r for r in extra if is_simple(r))
        if kept:
            notes.append(f"regla del puerto de acceso conservada: {', '.join(kept)}")
        unmanaged = sorted(r for r in extra if not is_simple(r))
        if unmanaged:
            notes.append(f"reglas no gestionadas conservadas: {', '.join(unmanaged)}")
        return notes
