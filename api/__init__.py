# api/__init__.py
from .server import create_app  # re-export for convenience

__all__ = ["create_app"]
