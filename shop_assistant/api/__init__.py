"""
HTTP session API.

FastAPI application exposing chat sessions and cost statistics to the
storefront.
"""

from .app import create_app

__all__ = ["create_app"]
