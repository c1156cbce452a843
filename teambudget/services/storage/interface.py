"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the same contract over the remote store and the local store
2. Wrap any backend in a fallback decorator without callers noticing
3. Use in-memory storage for testing
4. Keep the budget logic decoupled from storage implementation

Backend contract:
- Backend failures (connection, constraint, schema, decoding) raise
  StorageError. This is what triggers failover.
- Unknown ids are not failures: updates return None, deletes return False.
- Lists come back in display order (teams/members by name,
  expenditures newest first).
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from teambudget.models.budget import Expenditure, Member, Team


class BudgetStorageInterface(ABC):
    """
    Abstract interface for team, member and expenditure storage.

    Any storage implementation (SQL database, local buckets, etc.)
    must implement these methods.
    """

    #: Short backend name used in log events
    name: str = "storage"

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_teams(self) -> list[Team]:
        """List all teams sorted by name."""
        pass

    @abstractmethod
    async def get_team(self, team_id: str) -> Optional[Team]:
        """Get a team by id, None if it does not exist."""
        pass

    @abstractmethod
    async def insert_team(self, team: Team) -> Team:
        """
        Insert a new team.

        Returns:
            The team as stored

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def update_team(self, team_id: str, changes: dict[str, Any]) -> Optional[Team]:
        """Merge changes into a team. None if the team does not exist."""
        pass

    @abstractmethod
    async def delete_team(self, team_id: str) -> bool:
        """
        Delete a team: first every expenditure referencing it, then its
        members (with delete_member semantics), then the team itself.

        The steps are ordered but not transactional.

        Returns:
            True if the team existed and was deleted
        """
        pass

    @abstractmethod
    async def seed_teams(self, teams: list[Team]) -> int:
        """
        Insert teams only if the store holds no teams at all.

        Returns:
            Number of teams inserted (0 when teams already existed)
        """
        pass

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_members(self, team_id: Optional[str] = None) -> list[Member]:
        """List members sorted by name, optionally for one team."""
        pass

    @abstractmethod
    async def get_member(self, member_id: str) -> Optional[Member]:
        pass

    @abstractmethod
    async def insert_member(self, member: Member) -> Member:
        pass

    @abstractmethod
    async def update_member(self, member_id: str, changes: dict[str, Any]) -> Optional[Member]:
        pass

    @abstractmethod
    async def delete_member(self, member_id: str) -> bool:
        """
        Delete a member.

        CRITICAL: The member's expenditures are kept. Their member_id is
        cleared and their member_name_historical carries the attribution.
        """
        pass

    # ------------------------------------------------------------------
    # Expenditures
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_expenditures(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Expenditure]:
        """
        List expenditures with start <= date <= end (YYYY-MM-DD, inclusive).

        Ordered by date descending, then created_at descending.
        """
        pass

    @abstractmethod
    async def get_expenditure(self, expenditure_id: str) -> Optional[Expenditure]:
        pass

    @abstractmethod
    async def insert_expenditure(self, expenditure: Expenditure) -> Expenditure:
        """
        Insert an expenditure.

        Returns:
            The expenditure as stored. If the backend had to drop the
            member reference to complete the write, the returned record
            reflects that.
        """
        pass

    @abstractmethod
    async def update_expenditure(
        self,
        expenditure_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expenditure]:
        pass

    @abstractmethod
    async def delete_expenditure(self, expenditure_id: str) -> bool:
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class SchemaError(StorageError):
    """The backend schema does not match what the models expect."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
