"""HTTP surface for role memory."""

from .main import create_app
from .memory import MemoryServices, router

__all__ = ["create_app", "MemoryServices", "router"]
