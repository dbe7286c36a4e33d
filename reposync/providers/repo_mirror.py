"""
Adapter repo_mirror: clona todos los repositorios de un usuario/organización de
GitHub en un directorio del destino.

La lista upstream se consulta en `read` y viaja en `state.context`, así `diff`
sigue siendo puro. Aditivo: repos locales que ya no existen en GitHub se dejan.
La actualización periódica (git pull) es trabajo del cron de sincronización.
"""

import fnmatch
from typing import Any, Callable, Dict, List, Optional

from reposync.core.errors import ApplyFailed, ValidationError
from reposync.core.infra.base import BaseAdapter, as_bool, as_list
from reposync.core.infra.contracts import TargetHandle
from reposync.core.runtime.state import AttributeChange, ChangeSet, ResourceState, resource_id
from reposync.providers.github import GitHubAPI

PROTOCOLS = ("ssh", "https")


class RepoMirrorAdapter(BaseAdapter):
    kind = "repo_mirror"
    # Todo lo declarado son parámetros: el atributo comparado ("repositories") se deriva de upstream
    attributes = frozenset()
    parameters = frozenset({
        "owner", "owner_type", "path", "token", "protocol", "user",
        "include", "exclude", "include_archived", "include_forks",
    })
    required = frozenset({"owner", "path"})

    def __init__(self, api_factory: Optional[Callable[[Optional[str]], GitHubAPI]] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_factory = api_factory or (lambda token: GitHubAPI(token=token))

    def validate(self, name: str, desired: Dict[str, Any]) -> None:
        super().validate(name, desired)
        rid = resource_id(self.kind, name)
        if desired.get("owner_type", "user") not in ("user", "org"):
            raise ValidationError(f"{rid}: 'owner_type' debe ser 'user' u 'org'")
        if desired.get("protocol", "ssh") not in PROTOCOLS:
            raise ValidationError(f"{rid}: 'protocol' debe ser uno de {', '.join(PROTOCOLS)}")
        if not str(desired["path"]).startswith("/"):
            raise ValidationError(f"{rid}: 'path' debe ser absoluto")

    def upstream(self, desired: Dict[str, Any], rid: str = "") -> Dict[str, str]:
        """{nombre: URL de clonado} de los repos que pasan los filtros."""
        api = self.api_factory(desired.get("token") or None)
        try:
            repos = api.list_repositories(str(desired["owner"]), desired.get("owner_type", "user"))
        finally:
            api.close()
        include = [str(p) for p in as_list(desired.get("include"))] or ["*"]
        exclude = [str(p) for p in as_list(desired.get("exclude"))]
        with_archived = as_bool(desired.get("include_archived")) or False
        with_forks = as_bool(desired.get("include_forks", True))
        url_key = "ssh_url" if desired.get("protocol", "ssh") == "ssh" else "clone_url"

        selected = {}
        for repo in repos:
            if not isinstance(repo, dict) or not repo.get("name") or not repo.get(url_key):
                raise ApplyFailed(f"GitHub devolvió un repositorio sin 'name' o '{url_key}'", rid or None)
            name = repo["name"]
            if repo.get("archived") and not with_archived:
                continue
            if repo.get("fork") and not with_forks:
                continue
            if not any(fnmatch.fnmatch(name, p) for p in include):
                continue
            if any(fnmatch.fnmatch(name, p) for p in exclude):
                continue
            selected[name] = repo[url_key]
        return selected

    def read(self, target: TargetHandle, name: str, desired: Dict[str, Any]) -> ResourceState:
        rid = resource_id(self.kind, name)
        path = str(desired["path"]).rstrip("/")
        upstream = self.upstream(desired, rid)
        result = self.run(
            target, ["find", path, "-mindepth", "2", "-maxdepth", "2", "-name", ".git"], rid, check=False
        )
        local = set()
        if result.ok:
            for line in result.stdout.splitlines():
                parts = line.strip().rstrip("/").split("/")
                if len(parts) >= 2:
                    local.add(parts[-2])
        return ResourceState(
            self.kind,
            name,
            observed={"repositories": sorted(local & set(upstream))},
            present=result.ok,
            context={"upstream": upstream},
        )

    def diff(self, desired: Dict[str, Any], state: ResourceState) -> ChangeSet:
        want = sorted(state.context.get("upstream", {}))
        have = sorted(state.observed.get("repositories") or [])
        if want == have:
            return ChangeSet(state.id)
        return ChangeSet(state.id, (AttributeChange("repositories", have, want),))

    def _apply(
        self,
        target: TargetHandle,
        change_set: ChangeSet,
        desired: Dict[str, Any],
        state: ResourceState,
    ) -> Optional[List[str]]:
        rid = change_set.resource_id
        path = str(desired["path"]).rstrip("/")
        user = desired.get("user")
        upstream = state.context["upstream"]
        missing = sorted(set(upstream) - set(state.observed.get("repositories") or []))

        self.run(target, ["mkdir", "-p", path], rid)
        if user:
            self.run(target, ["chown", str(user), path], rid)
        for repo in missing:
            command = ["git", "clone", "--quiet", upstream[repo], f"{path}/{repo}"]
            if user:
                command = ["runuser", "-u", str(user), "--"] + command
            self.run(target, command, rid)
        return [f"{len(missing)} repositorio(s) clonado(s)"]
