"""
API Module for the purchase intent engine.

FastAPI application with routes for:
- Applying conversation turns
- Reading intent records and listings
- Taxonomy and engine stats
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
