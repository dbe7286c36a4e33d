"""
RepoSync - Control Plane declarativo para endurecer y sincronizar un host.
"""

__version__ = "1.0.0"
