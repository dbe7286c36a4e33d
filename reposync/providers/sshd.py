"""
Adapter de hardening SSH: directivas de sshd en un drop-in gestionado.

El estado se lee con `sshd -T` (configuración efectiva, ya parseada), así el diff
se calcula sobre atributos y no sobre patrones de texto.

Commit-then-cutover: cambios que pueden quitar el camino de acceso actual
(puerto, PasswordAuthentication, AllowUsers, ...) se aplican en tres fases:
  1. commit: drop-in intermedio que escucha en puertos viejos + nuevos y mantiene
     los métodos de autenticación actuales; `sshd -t` y reload.
  2. verify: el nuevo puerto acepta conexiones y el login por clave funciona.
  3. cutover: drop-in final (revoca lo viejo) y el handle pasa al puerto nuevo.
Si la verificación falla se restaura el drop-in original y el recurso falla.
"""

import re
from typing import Any, Dict, List, Optional

from reposync.core.errors import ApplyFailed, ValidationError
from reposync.core.infra.base import BaseAdapter, as_list
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.state import ChangeSet, ResourceState, resource_id
from reposync.observability.logging import get_logger

logger = get_logger("providers.sshd")

DEFAULT_DROPIN = "/etc/ssh/sshd_config.d/00-reposync.conf"

DIRECTIVES = {
    "port": "Port",
    "listen_address": "ListenAddress",
    "password_authentication": "PasswordAuthentication",
    "pubkey_authentication": "PubkeyAuthentication",
    "kbd_interactive_authentication": "KbdInteractiveAuthentication",
    "challenge_response_authentication": "ChallengeResponseAuthentication",
    "permit_root_login": "PermitRootLogin",
    "permit_empty_passwords": "PermitEmptyPasswords",
    "max_auth_tries": "MaxAuthTries",
    "max_sessions": "MaxSessions",
    "login_grace_time": "LoginGraceTime",
    "client_alive_interval": "ClientAliveInterval",
    "client_alive_count_max": "ClientAliveCountMax",
    "x11_forwarding": "X11Forwarding",
    "allow_tcp_forwarding": "AllowTcpForwarding",
    "allow_agent_forwarding": "AllowAgentForwarding",
    "allow_users": "AllowUsers",
    "allow_groups": "AllowGroups",
    "use_pam": "UsePAM",
    "log_level": "LogLevel",
}

# Directivas con múltiples valores (una línea por valor en `sshd -T`)
MULTI_VALUED = frozenset({"port", "listen_address", "allow_users", "allow_groups"})

# Directivas que pueden revocar el camino de acceso vigente
ACCESS_DIRECTIVES = frozenset({
    "port",
    "password_authentication",
    "kbd_interactive_authentication",
    "challenge_response_authentication",
    "permit_root_login",
    "allow_users",
    "allow_groups",
    "listen_address",
})

_ATTRIBUTE = re.compile(r"^[a-z][a-z0-9_]*$")
_ROOT_LOGIN_ALIASES = {"without-password": "prohibit-password"}


def directive_name(attribute: str) -> str:
    return DIRECTIVES.get(attribute) or "".join(part.capitalize() for part in attribute.split("_"))


def parse_sshd_t(output: str) -> Dict[str, List[str]]:
    """Salida de `sshd -T` → {directiva en minúsculas: [valores]}."""
    values: Dict[str, List[str]] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line or " " not in line:
            continue
        key, value = line.split(" ", 1)
        values.setdefault(key.lower(), []).append(value.strip())
    return values


class SSHConfigAdapter(BaseAdapter):
    kind = "sshd"
    access_path = True
    parameters = frozenset({"service", "dropin"})

    def __init__(self, dropin: str = DEFAULT_DROPIN, **kwargs):
        super().__init__(**kwargs)
        self.dropin = dropin

    # ------------------------------------------------------------------
    # Validación y normalización
    # ------------------------------------------------------------------

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        rid = resource_id(self.kind, name)
        for attribute, value in desired.items():
            if attribute in self.parameters:
                continue
            if not _ATTRIBUTE.match(attribute):
                raise ValidationError(f"{rid}: directiva inválida '{attribute}' (usar snake_case)")
            if isinstance(value, dict):
                raise ValidationError(f"{rid}: '{attribute}' no admite un mapeo")
        if "port" in desired:
            ports = as_list(desired["port"])
            if not ports:
                raise ValidationError(f"{rid}: 'port' no puede estar vacío")
            for port in ports:
                if not str(port).isdigit() or not 1 <= int(port) <= 65535:
                    raise ValidationError(f"{rid}: puerto inválido '{port}'")
        password = self.normalize("password_authentication", desired.get("password_authentication"))
        pubkey = self.normalize("pubkey_authentication", desired.get("pubkey_authentication"))
        if password == "no" and pubkey == "no":
            raise ValidationError(f"{rid}: deshabilitar contraseña y clave pública deja el host sin acceso")

    def normalize(self, attribute: str, value: Any) -> Any:
        if value is None:
            return None
        if attribute == "port":
            return sorted({int(p) for p in as_list(value)})
        if attribute in MULTI_VALUED:
            items: List[str] = []
            for v in as_list(value):
                items.extend(str(v).split())
            return sorted(set(items))
        if isinstance(value, list):
            value = " ".join(str(v) for v in value)
        if isinstance(value, bool):
            return "yes" if value else "no"
        text = str(value).strip().lower()
        if attribute == "permit_root_login":
            return _ROOT_LOGIN_ALIASES.get(text, text)
        return text

    # ------------------------------------------------------------------
    # read
    # ------------------------------------------------------------------

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        effective = parse_sshd_t(self.run(target, ["sshd", "-T"], rid).stdout)
        observed: Dict[str, Any] = {}
        for attribute in desired:
            if attribute in self.parameters:
                continue
            values = effective.get(directive_name(attribute).lower())
            if values is None:
                observed[attribute] = None
            elif attribute in MULTI_VALUED:
                observed[attribute] = values
            else:
                observed[attribute] = values[-1]
        dropin = desired.get("dropin") or self.dropin
        return ResourceState(
            self.kind,
            name,
            observed=observed,
            context={"dropin_content": target.fetch_file(dropin, timeout=self.timeout)},
        )

    # ------------------------------------------------------------------
    # apply
    # ------------------------------------------------------------------

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        rid = change_set.resource_id
        dropin = desired.get("dropin") or self.dropin
        service = desired.get("service") or self._service_name(target, rid)
        original = state.context.get("dropin_content")
        final = self.render(desired)

        access_port = target.access_port
        desired_ports = self.normalize("port", desired.get("port")) or [access_port]
        new_ports = [p for p in desired_ports if p != access_port]
        disables_password = self.normalize("password_authentication", desired.get("password_authentication")) == "no"
        touches_access = any(attr in ACCESS_DIRECTIVES for attr in change_set.attributes)

        if not touches_access:
            self._install(target, rid, dropin, final, service, rollback=original)
            return None

        guard = self.guard(rid)
        interim = self.render(desired, interim=True, keep_port=access_port)

        # 1. commit: reemplazo instalado junto al acceso actual
        guard.commit(lambda: self._install(target, rid, dropin, interim, service, rollback=original))

        # 2. verify: el reemplazo responde antes de revocar nada
        verify_port = new_ports[0] if new_ports else access_port

        def replacement_works() -> bool:
            if any(not target.probe(port) for port in new_ports):
                return False
            return target.verify_key_access(verify_port)

        if not guard.verify(replacement_works, attempts=self.probe_attempts, delay=self.probe_delay):
            logger.warning("%s: acceso nuevo no confirmado en puerto %s; restaurando", rid, verify_port)
            self._restore(target, rid, dropin, original, service)
            raise ApplyFailed(
                f"No se pudo confirmar el acceso por clave en el puerto {verify_port}; configuración restaurada",
                rid,
            )

        # 3. cutover: solo ahora se revoca el acceso viejo
        guard.revoke(lambda: self._install(target, rid, dropin, final, service, rollback=interim))
        notes = []
        if access_port not in desired_ports:
            target.switch_port(verify_port)
            notes.append(f"acceso movido del puerto {access_port} al {verify_port}")
        if disables_password:
            notes.append("autenticación por contraseña deshabilitada tras verificar acceso por clave")
        return notes

    def render(self, desired: Dict[str, Any], interim: bool = False, keep_port: Optional[int] = None) -> str:
        """
        Contenido del drop-in. En modo interim conserva el puerto vigente y omite
        las directivas que restringen el acceso (quedan los valores actuales).
        """
        lines = ["# Gestionado por reposync: no editar a mano"]
        for attribute, value in desired.items():
            if attribute in self.parameters:
                continue
            normalized = self.normalize(attribute, value)
            if interim and attribute in ACCESS_DIRECTIVES and attribute != "port":
                continue
            if attribute == "port":
                ports = list(normalized)
                if interim and keep_port is not None and keep_port not in ports:
                    ports = [keep_port] + ports
                lines.extend(f"Port {p}" for p in ports)
            elif attribute in MULTI_VALUED:
                lines.append(f"{directive_name(attribute)} {' '.join(normalized)}")
            else:
                lines.append(f"{directive_name(attribute)} {normalized}")
        if interim and "port" not in desired and keep_port is not None:
            lines.append(f"Port {keep_port}")
        return "\n".join(lines) + "\n"

    def _install(
        self,
        target: TargetHandle,
        rid: str,
        dropin: str,
        content: str,
        service: str,
        rollback: Optional[str],
    ) -> None:
        """Escribe, valida con `sshd -t` y recarga; si no valida, restaura `rollback`."""
        target.push_file(dropin, content, mode="0644", owner="root:root", timeout=self.timeout)
        check = self.run(target, ["sshd", "-t"], rid, check=False)
        if not check.ok:
            self._restore(target, rid, dropin, rollback, service, reload=False)
            raise ApplyFailed("Configuración SSH inválida (sshd -t); restaurada", rid, diagnostic=check.stderr)
        # reload (no restart) para no cortar sesiones abiertas
        self.run(target, ["systemctl", "reload", service], rid)

    def _restore(
        self,
        target: TargetHandle,
        rid: str,
        dropin: str,
        content: Optional[str],
        service: str,
        reload: bool = True,
    ) -> None:
        if content is None:
            self.run(target, ["rm", "-f", dropin], rid)
        else:
            target.push_file(dropin, content, mode="0644", owner="root:root", timeout=self.timeout)
        if reload:
            self.run(target, ["systemctl", "reload", service], rid)

    def _service_name(self, target: TargetHandle, rid: str) -> str:
        """Debian/Ubuntu usan 'ssh'; RHEL/Fedora/Arch usan 'sshd'."""
        result = self.run(target, ["systemctl", "list-unit-files", "ssh.service"], rid, check=False)
        return "ssh" if "ssh.service" in result.stdout else "sshd"
