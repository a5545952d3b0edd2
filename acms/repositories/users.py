"""
User Repository Interface

Contract for the document store that owns user records. The store is the
source of truth for principals; the cache only ever holds copies of what
these methods return.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional


class UserRepository(ABC):
    """
    Abstract repository for user records.

    Records are plain mappings as stored, secret fields included; callers
    strip them before caching or returning them.
    """

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Find a user record by ID, or None if it does not exist."""
        pass

    @abstractmethod
    async def update_role(self, user_id: str, role: str) -> Optional[Dict[str, Any]]:
        """Change a user's role. Returns the updated record or None if missing."""
        pass

    @abstractmethod
    async def assign_counsellor(
        self, student_id: str, counsellor_id: str
    ) -> Optional[Dict[str, Any]]:
        """Point a student at a counsellor. Returns the updated record or None."""
        pass

    @abstractmethod
    async def update_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Apply profile field updates. Returns the updated record or None."""
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        """Delete a user. Returns True if a record was removed."""
        pass
