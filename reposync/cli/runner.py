"""
Ejecución del documento desde la CLI: elige destinos, arma adapters y
Reconciler, y maneja Ctrl+C como cancelación entre recursos.
"""

import signal
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from reposync.config import Settings
from reposync.core.engine import Reconciler, RetryPolicy, StateReport
from reposync.core.errors import ConfigError
from reposync.core.project.loader import DesiredStateLoader
from reposync.core.project.models import ConnectionType, DesiredState, TargetConfig
from reposync.core.runtime.secrets import SecretStore
from reposync.observability.logging import get_logger
from reposync.providers import build_adapters
from reposync.transport import build_target

logger = get_logger("cli")


def split_csv(value: Optional[str]) -> Optional[List[str]]:
    """'a,b, c' → ['a', 'b', 'c']; vacío → None."""
    if not value:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


def select_targets(
    document: DesiredState,
    limit: Optional[str] = None,
    local: bool = False,
) -> List[Tuple[str, TargetConfig]]:
    """
    Destinos a reconciliar.

    --local: esta máquina (ignora targets del documento).
    --limit: un destino del documento por nombre.
    """
    if local:
        config = document.targets.get("localhost") or TargetConfig(connection=ConnectionType.LOCAL)
        return [("localhost", config)]
    if limit:
        if limit not in document.targets:
            available = ", ".join(document.targets) or "(ninguno)"
            raise ConfigError(f"Destino '{limit}' no definido. Disponibles: {available}")
        return [(limit, document.targets[limit])]
    if not document.targets:
        raise ConfigError("El documento no define 'targets'. Usa --local o agrega un destino")
    return list(document.targets.items())


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """
    Primer Ctrl+C: cancela entre recursos (el apply en curso termina).
    Segundo Ctrl+C: interrupción inmediata.
    """
    cancel = threading.Event()
    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Cancelación solicitada: se termina el recurso en curso y se omite el resto")
        cancel.set()

    try:
        signal.signal(signal.SIGINT, handler)
    except ValueError:
        # Fuera del hilo principal no se pueden instalar señales
        previous = None
    try:
        yield cancel
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def run_document(
    settings: Settings,
    document: DesiredState,
    dry_run: bool = False,
    limit: Optional[str] = None,
    local: bool = False,
    tags: Optional[List[str]] = None,
    skip_tags: Optional[List[str]] = None,
    cancel: Optional[threading.Event] = None,
    loader: Optional[DesiredStateLoader] = None,
) -> List[StateReport]:
    """
    Reconcilia cada destino seleccionado, en secuencia.

    Con `loader`, el puerto de acceso que cambió durante la ejecución (cutover de
    sshd) se guarda en `targets.<nombre>.port` para que la siguiente ejecución
    conecte por él.
    """
    adapters = build_adapters(settings)
    secrets = SecretStore(settings.secrets_dir)
    retry = RetryPolicy(settings.retries, settings.backoff_base, settings.backoff_max)

    reports: List[StateReport] = []
    for name, config in select_targets(document, limit=limit, local=local):
        target = build_target(name, config, local=local)
        reconciler = Reconciler(
            target,
            adapters,
            secrets=secrets,
            retry=retry,
            verify_after_apply=settings.verify_after_apply,
        )
        reports.append(
            reconciler.reconcile(document.resources, dry_run=dry_run, tags=tags, skip_tags=skip_tags, cancel=cancel)
        )
        if loader is not None and name in document.targets and target.access_port != config.port:
            persist_access_port(loader, name, target.access_port)
        if cancel is not None and cancel.is_set():
            break
    return reports


def persist_access_port(loader: DesiredStateLoader, name: str, port: int) -> None:
    """Escribe el puerto de acceso vigente de un destino en el documento."""
    data = loader.load_raw()
    data.setdefault("targets", {}).setdefault(name, {})["port"] = port
    loader.save_raw(data)
    logger.info("%s: puerto de acceso %s guardado en %s", name, port, loader.path)


def worst_exit_code(reports: List[StateReport]) -> int:
    return max((r.exit_code for r in reports), default=0)
