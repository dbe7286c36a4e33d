"""
Transporte SSH - ejecución remota con ssh y sudo
"""

import shlex
import subprocess
from pathlib import Path
from typing import List, Optional

from reposync.core.errors import TargetUnreachable
from reposync.core.infra.contracts import CommandResult
from reposync.transport.base import ShellTarget


class SSHTarget(ShellTarget):
    """
    Handle de un host remoto. Cada llamada abre su propia sesión ssh: no se
    guarda estado de conexión entre llamadas (salvo el puerto de acceso vigente).
    """

    def __init__(
        self,
        name: str,
        host: str,
        user: str = "root",
        port: int = 22,
        key_path: Optional[Path] = None,
        become: bool = True,
        ssh_options: Optional[List[str]] = None,
        connect_timeout: int = 10,
    ):
        self.name = name
        self.host = host
        self.user = user
        self.port = port
        self.key_path = Path(key_path).expanduser() if key_path else None
        self.become = become
        self.ssh_options = list(ssh_options or [])
        self.connect_timeout = connect_timeout

    def _ssh_command(self, port: int, batch: bool = True, extra: Optional[List[str]] = None) -> List[str]:
        cmd = [
            "ssh",
            "-p", str(port),
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "BatchMode=yes" if batch else "BatchMode=no",
        ]
        for option in self.ssh_options:
            cmd.extend(["-o", option])
        for option in extra or []:
            cmd.extend(["-o", option])
        if self.key_path and self.key_path.exists():
            cmd.extend(["-i", str(self.key_path)])
        cmd.append(f"{self.user}@{self.host}")
        return cmd

    def _wrap(self, command: str) -> str:
        if self.become and self.user != "root":
            return f"sudo -n sh -c {shlex.quote(command)}"
        return command

    def execute(self, command: str, input: Optional[str] = None, timeout: Optional[float] = None) -> CommandResult:
        """
        Ejecuta un comando remoto vía SSH.

        Returns:
            CommandResult con stdout, stderr y exit code del comando remoto

        Raises:
            TargetUnreachable: ssh no pudo conectar (exit 255), timeout o ssh no instalado
        """
        full_cmd = self._ssh_command(self.port) + [self._wrap(command)]
        try:
            result = subprocess.run(
                full_cmd,
                input=input,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise TargetUnreachable(f"Timeout ({timeout}s) ejecutando comando en {self.host}")
        except FileNotFoundError:
            raise TargetUnreachable("Comando ssh no encontrado. Instala openssh-client")

        if result.returncode == 255:
            raise TargetUnreachable(
                f"Conexión SSH fallida con {self.user}@{self.host}:{self.port}: {result.stderr.strip()[:200]}"
            )
        return CommandResult(result.stdout, result.stderr, result.returncode)

    def verify_key_access(self, port: int, timeout: float = 10.0) -> bool:
        """Prueba login solo por clave pública (sin contraseña) en el puerto indicado."""
        cmd = self._ssh_command(
            port,
            batch=True,
            extra=["PasswordAuthentication=no", "PreferredAuthentications=publickey"],
        ) + ["true"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace", timeout=timeout, check=False)
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False
        return result.returncode == 0

    def test_connection(self) -> bool:
        """Prueba la conexión SSH al servidor."""
        try:
            return self.execute("echo 'SSH connection test'", timeout=15).ok
        except TargetUnreachable:
            return False
