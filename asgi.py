"""
asgi.py -- ASGI entry point for trustgate.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 1

Process-wide security state (login attempt counters, honeypot strikes,
behavioral profiles) lives in the worker's memory. Run a single worker per
instance, or accept that each worker keeps its own counters.
"""

from api.main import app

__all__ = ["app"]
