"""
Transporte local - ejecuta en esta misma máquina (--local)
"""

import os
import pwd
import subprocess
from pathlib import Path
from typing import Optional

from reposync.core.errors import TargetUnreachable
from reposync.core.infra.contracts import CommandResult
from reposync.transport.base import ShellTarget


class LocalTarget(ShellTarget):
    """Handle de localhost; usa sudo -n si no se ejecuta como root."""

    def __init__(self, name: str = "localhost", user: Optional[str] = None, port: int = 22, become: bool = True):
        self.name = name
        self.host = "127.0.0.1"
        self.user = user or pwd.getpwuid(os.getuid()).pw_name
        self.port = port
        self.become = become

    def execute(self, command: str, input: Optional[str] = None, timeout: Optional[float] = None) -> CommandResult:
        argv = ["sh", "-c", command]
        if self.become and os.geteuid() != 0:
            argv = ["sudo", "-n"] + argv
        try:
            result = subprocess.run(
                argv,
                input=input,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise TargetUnreachable(f"Timeout ({timeout}s) ejecutando: {command.split()[0]}")
        return CommandResult(result.stdout, result.stderr, result.returncode)

    def verify_key_access(self, port: int, timeout: float = 10.0) -> bool:
        """
        En local no hay sesión SSH que probar: se exige al menos una clave en
        ~/.ssh/authorized_keys del usuario antes de deshabilitar contraseñas.
        """
        try:
            home = Path(pwd.getpwnam(self.user).pw_dir)
        except KeyError:
            return False
        content = self.fetch_file(str(home / ".ssh" / "authorized_keys"), timeout=timeout)
        if not content:
            return False
        return any(line.strip() and not line.strip().startswith("#") for line in content.splitlines())
