"""HTTP surface for governing and brand sites."""

from .app import create_app

__all__ = ["create_app"]
