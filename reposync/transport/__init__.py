"""
Transportes: handles de destino (SSH remoto y local).
"""

from reposync.core.project.models import ConnectionType, TargetConfig
from reposync.transport.base import ShellTarget
from reposync.transport.local import LocalTarget
from reposync.transport.ssh import SSHTarget


def build_target(name: str, config: TargetConfig, local: bool = False) -> ShellTarget:
    """Crea el handle adecuado para un destino del documento."""
    if local or config.connection == ConnectionType.LOCAL.value:
        return LocalTarget(name=name, user=config.user if not local else None, port=config.port, become=config.become)
    return SSHTarget(
        name=name,
        host=config.host,
        user=config.user,
        port=config.port,
        key_path=config.key_path,
        become=config.become,
        ssh_options=config.ssh_options,
    )


__all__ = ["LocalTarget", "SSHTarget", "ShellTarget", "build_target"]
