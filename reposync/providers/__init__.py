"""
Adapters de recursos, uno por kind.

build_adapters() arma el registro kind → adapter con los ajustes de ejecución.
"""

from typing import Dict, Optional

from reposync.config import Settings
from reposync.core.infra.contracts import ResourceAdapter
from reposync.providers.cron import CronAdapter
from reposync.providers.file import FileAdapter
from reposync.providers.firewall import FirewallAdapter
from reposync.providers.packages import PackagesAdapter
from reposync.providers.repo_mirror import RepoMirrorAdapter
from reposync.providers.service import ServiceAdapter
from reposync.providers.sshd import SSHConfigAdapter
from reposync.providers.syncthing import SyncthingAdapter

ADAPTER_CLASSES = (
    PackagesAdapter,
    ServiceAdapter,
    SSHConfigAdapter,
    FirewallAdapter,
    SyncthingAdapter,
    RepoMirrorAdapter,
    FileAdapter,
    CronAdapter,
)


def build_adapters(settings: Optional[Settings] = None) -> Dict[str, ResourceAdapter]:
    settings = settings or Settings()
    common = {
        "timeout": settings.command_timeout,
        "probe_attempts": settings.probe_attempts,
        "probe_delay": settings.probe_delay,
    }
    adapters: Dict[str, ResourceAdapter] = {}
    for cls in ADAPTER_CLASSES:
        if cls is SSHConfigAdapter:
            adapters[cls.kind] = cls(dropin=settings.sshd_dropin, **common)
        else:
            adapters[cls.kind] = cls(**common)
    return adapters


__all__ = ["ADAPTER_CLASSES", "build_adapters"]
