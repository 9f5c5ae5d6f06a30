"""Careflow HTTP API."""

from careflow.api.main import create_app
from careflow.api.routes import router

__all__ = ["create_app", "router"]
