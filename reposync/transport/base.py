"""
Base para handles de destino basados en shell.

fetch_file/push_file se construyen sobre execute(), así SSH y local comparten
la misma semántica (escritura atómica vía archivo temporal + mv).
"""

import shlex
import socket
from typing import Optional

from reposync.core.errors import ApplyFailed, PermissionDenied
from reposync.core.infra.contracts import CommandResult

_MISSING = 66


class ShellTarget:
    """Implementa fetch_file/push_file/probe; las subclases implementan execute()."""

    name: str = "target"
    host: str = "localhost"
    port: int = 22

    @property
    def access_port(self) -> int:
        return self.port

    def execute(self, command: str, input: Optional[str] = None, timeout: Optional[float] = None) -> CommandResult:
        raise NotImplementedError

    def fetch_file(self, path: str, timeout: Optional[float] = None) -> Optional[str]:
        q = shlex.quote(path)
        result = self.execute(f"if [ -f {q} ]; then cat -- {q}; else exit {_MISSING}; fi", timeout=timeout)
        if result.exit_code == _MISSING:
            return None
        if not result.ok:
            raise _file_error(f"No se pudo leer {path}", result)
        return result.stdout

    def push_file(
        self,
        path: str,
        content: str,
        mode: Optional[str] = None,
        owner: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        q = shlex.quote(path)
        tmp = shlex.quote(f"{path}.reposync.tmp")
        steps = [f"mkdir -p -- $(dirname -- {q})", f"cat > {tmp}"]
        if mode:
            steps.append(f"chmod {shlex.quote(str(mode))} {tmp}")
        if owner:
            steps.append(f"chown {shlex.quote(owner)} {tmp}")
        steps.append(f"mv -f -- {tmp} {q}")
        result = self.execute(" && ".join(steps), input=content, timeout=timeout)
        if not result.ok:
            raise _file_error(f"No se pudo escribir {path}", result)

    def probe(self, port: int, timeout: float = 5.0) -> bool:
        """Prueba de conexión TCP cruda (más rápida que un handshake SSH completo)."""
        try:
            with socket.create_connection((self.host, port), timeout=timeout):
                return True
        except OSError:
            return False

    def switch_port(self, port: int) -> None:
        self.port = port


def _file_error(message: str, result: CommandResult) -> Exception:
    stderr = (result.stderr or "").strip()
    if "permission denied" in stderr.lower() or "not permitted" in stderr.lower():
        return PermissionDenied(f"{message}: {stderr[:200]}")
    return ApplyFailed(message, diagnostic=stderr)
