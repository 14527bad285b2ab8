"""HTTP API for the billing engine."""

from .app import app, create_app

__all__ = ["app", "create_app"]
