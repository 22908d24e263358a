"""HTTP and WebSocket surface for the dispatch core."""

from .app import create_app

__all__ = ["create_app"]
