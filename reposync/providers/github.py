"""
Módulo GitHub - Interacción con la GitHub REST API
"""

from typing import Any, Dict, List, Optional

import requests

from reposync.core.errors import ApplyFailed, PermissionDenied, TargetUnreachable

API_URL = "https://api.github.com"
PER_PAGE = 100


class GitHubAPI:
    """Cliente mínimo para GitHub API (listado de repositorios con paginación)"""

    def __init__(
        self,
        token: Optional[str] = None,
        url: str = API_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Inicializa cliente GitHub API

        Args:
            token: Token de acceso (opcional; sin token solo se ven repos públicos)
            url: URL base de la API (GitHub Enterprise usa otra)
            timeout: Timeout por petición en segundos
            session: Sesión de requests (inyectable en tests; no se cierra al terminar)
        """
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        self.authenticated = bool(token)

    def close(self) -> None:
        """Cierra la sesión HTTP si la creó este cliente."""
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "GitHubAPI":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """
        GET con traducción de errores

        Raises:
            TargetUnreachable: timeout o error de conexión (reintentable)
            PermissionDenied: 401/403 (token inválido, sin alcance o rate limit)
            ApplyFailed: cualquier otro estado no exitoso o error de la petición
        """
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise TargetUnreachable(f"Timeout al conectar con GitHub: {url}") from e
        except requests.exceptions.ConnectionError as e:
            raise TargetUnreachable(f"Error de conexión con GitHub: {url}") from e
        except requests.exceptions.RequestException as e:
            raise ApplyFailed(f"Petición a GitHub fallida: {url}", diagnostic=str(e)) from e

        if response.status_code in (401, 403):
            raise PermissionDenied(f"GitHub rechazó la petición ({response.status_code}): {response.text[:200]}")
        if response.status_code == 404:
            raise ApplyFailed(f"GitHub: no encontrado: {url}")
        if response.status_code != 200:
            raise ApplyFailed(f"GitHub: error {response.status_code}", diagnostic=response.text)
        return response

    def paginate(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Sigue el header Link (rel="next") hasta agotar las páginas."""
        items: List[Dict[str, Any]] = []
        url: Optional[str] = f"{self.url}/{endpoint.lstrip('/')}"
        query = dict(params or {}, per_page=PER_PAGE)
        while url:
            response = self._get(url, params=query)
            try:
                page = response.json()
            except ValueError as e:
                raise ApplyFailed(f"GitHub devolvió una respuesta que no es JSON: {url}") from e
            if not isinstance(page, list):
                raise ApplyFailed(f"GitHub devolvió una respuesta inesperada: {url}", diagnostic=str(page)[:200])
            items.extend(page)
            url = response.links.get("next", {}).get("url")
            # La URL de "next" ya lleva los parámetros
            query = None
        return items

    def list_repositories(self, owner: str, owner_type: str = "user") -> List[Dict[str, Any]]:
        """
        Lista los repositorios de un usuario u organización

        Args:
            owner: Usuario u organización de GitHub
            owner_type: "user" u "org"

        Returns:
            Lista de repositorios (dicts de la API) propiedad de `owner`
        """
        if owner_type == "org":
            return self.paginate(f"orgs/{owner}/repos", {"type": "all"})
        if self.authenticated:
            # /user/repos incluye los privados del dueño del token
            repos = self.paginate("user/repos", {"affiliation": "owner"})
            if any(r.get("owner", {}).get("login", "").lower() == owner.lower() for r in repos):
                return [r for r in repos if r.get("owner", {}).get("login", "").lower() == owner.lower()]
        return self.paginate(f"users/{owner}/repos", {"type": "owner"})
