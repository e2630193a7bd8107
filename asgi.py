"""
asgi.py -- ASGI entry point for gatekeeper.

Keeps the server target stable (asgi:app) independent of where the FastAPI
app is assembled.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
