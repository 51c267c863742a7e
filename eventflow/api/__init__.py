"""
API package - FastAPI routes and schemas.
"""

from eventflow.api.routes import websocket, workflows

__all__ = ["workflows", "websocket"]
