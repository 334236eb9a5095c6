"""Web interface for Summary Hub."""

from .server import create_app

__all__ = ["create_app"]
