"""
Contratos y base para adapters de recursos y handles de destino.

Los adapters (sshd, firewall, syncthing, repo_mirror, ...) implementan estos contratos;
el core no depende de ningún adapter concreto.
"""

from reposync.core.infra.base import BaseAdapter, CutoverGuard
from reposync.core.infra.contracts import (
    CommandResult,
    ExecutionResult,
    Outcome,
    ResourceAdapter,
    TargetHandle,
)

__all__ = [
    "BaseAdapter",
    "CommandResult",
    "CutoverGuard",
    "ExecutionResult",
    "Outcome",
    "ResourceAdapter",
    "TargetHandle",
]
