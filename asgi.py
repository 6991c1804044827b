"""
asgi.py -- ASGI entry point for the supplier portal.

Run with:  uvicorn asgi:app --reload

The portal serves only the JSON API; the browser client is deployed
separately and reaches it through CORS_ORIGINS.
"""

from api.main import app

__all__ = ["app"]
