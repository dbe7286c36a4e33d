"""
Runtime: estado efímero de reconciliación, resolución de rutas y secretos.
"""

from reposync.core.runtime.resolver import default_document, default_secrets_dir, project_base
from reposync.core.runtime.secrets import SecretStore
from reposync.core.runtime.state import AttributeChange, ChangeSet, ResourceState, resource_id

__all__ = [
    "AttributeChange",
    "ChangeSet",
    "ResourceState",
    "SecretStore",
    "default_document",
    "default_secrets_dir",
    "project_base",
    "resource_id",
]
