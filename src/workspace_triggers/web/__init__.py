"""Status API for polling triggers."""

from .server import create_app

__all__ = ["create_app"]
