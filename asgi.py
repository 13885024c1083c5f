"""
asgi.py -- ASGI entry point for the ResumeAgent auth service.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so deployment tooling has one stable import
path regardless of how the API package is organised.
"""

from api.main import app

__all__ = ["app"]
