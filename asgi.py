"""
asgi.py -- ASGI entry point for Orbit Auth.

Kept separate from api/main.py so process managers have one stable import
path regardless of how the api package is laid out internally.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
