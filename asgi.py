"""
asgi.py -- Assembles the authguard ASGI app.

The JSON API (api/) and the login pages (web/) never import each other;
this module is the one place both are loaded, and it mounts the page router
onto the API app.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Web UI"])
