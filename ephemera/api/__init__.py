"""HTTP surface."""

from ephemera.api.server import create_web_app

__all__ = ["create_web_app"]
