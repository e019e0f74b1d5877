"""
Web interface for the serial bridge.

Exposes device listing, read streams and writes over HTTP.
"""

from serbridge.web.app import create_app, shutdown_app

__all__ = ["create_app", "shutdown_app"]
