"""Reference HTTP server for the remote document and blob store."""

from __future__ import annotations

from .server import APIServerState, TravelogAPIServer, create_app

__all__ = ["TravelogAPIServer", "APIServerState", "create_app"]
