"""
asgi.py -- ASGI entry point for SecureCMS.

api/main.py builds the application; this module is what the server imports,
so deployment config never has to know the package layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
