"""
Upload Router - a CORS-friendly request router for browser uploads.

This package contains the complete application:
- core: Framework-agnostic routing logic and value objects
- infrastructure: Object storage and upstream API clients
- api: FastAPI handler, routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
