"""Logging del Control Plane."""

from reposync.observability.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
