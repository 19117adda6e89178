"""Authentication module.

This module provides:
- Token verification (JWKS verifier)
- Auth middleware for FastAPI
- Request state with viewer identity and subscription plan

Note: Test-only verifiers are in tests/support/jwt_verifier.py
"""

from chatroute.auth.middleware import AuthMiddleware, Viewer, get_viewer
from chatroute.auth.verifier import JwksTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "JwksTokenVerifier",
    "TokenVerifier",
]
