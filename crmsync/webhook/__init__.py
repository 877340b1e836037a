"""
Webhook Module - FastAPI application for inbound events
"""

from .app import create_app, create_router, verify_signature

__all__ = ["create_app", "create_router", "verify_signature"]
