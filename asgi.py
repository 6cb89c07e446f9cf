"""
asgi.py -- ASGI entry point for quotegate.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers point at one stable
module path while the app assembly stays in api/.
"""

from api.main import app

__all__ = ["app"]
