"""
Proxy Package
=============

This package implements the Jira relay endpoint that performs authenticated
Jira REST calls on behalf of the Figma plugin.

Main Components:
----------------
- routes.py: FastAPI router with the relay endpoint (/api/jira-proxy)
- forwarding.py: Upstream request construction, dispatch and classification

Usage:
------
    from relay.app.proxy import build_proxy_router
    app.include_router(build_proxy_router(limiter, "200 per 15 minutes"), prefix="/api")
"""

from .routes import build_proxy_router

__all__ = ["build_proxy_router"]
