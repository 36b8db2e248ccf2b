"""
API Package.

aiohttp HTTP surface of the delivery engine.
"""

from .routes import EngineAPI, EngineEncoder, create_engine_app, json_response


__all__ = [
    "EngineAPI",
    "EngineEncoder",
    "create_engine_app",
    "json_response",
]
