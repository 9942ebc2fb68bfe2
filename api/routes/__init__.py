"""
API Routes for the purchase intent engine.
"""

from . import intent

__all__ = ["intent"]
