"""API route handlers."""
from . import holdings

__all__ = ["holdings"]
