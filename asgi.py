"""
asgi.py -- Application assembly for VinylRewind.

The ASGI entry point that deployment tooling imports. api/main.py owns the
FastAPI app; this module only re-exports it so the server command stays
stable if assembly grows.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
