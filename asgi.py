"""
asgi.py -- ASGI entry point for the LearnHub auth service.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app  # noqa: F401
