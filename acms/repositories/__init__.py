"""
Repository contracts for external persistence.
"""

from .users import UserRepository

__all__ = ["UserRepository"]
