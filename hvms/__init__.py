"""
HVMS - Hospital visitor check-in service.

This package contains the complete application:
- core: Framework-agnostic custody logic (naming, tokens, orchestration)
- infrastructure: External service integrations
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
