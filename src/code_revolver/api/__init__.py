"""HTTP control surface for the rotation engine."""

from .app import create_app


__all__ = ["create_app"]
