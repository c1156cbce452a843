"""
Fallback Storage Decorator

DESIGN DECISION: Failover lives in one wrapper, not in every operation.
Each call goes to the primary backend first; if it raises StorageError
the same call is replayed on the secondary. The next call tries the
primary again: a failure never switches the mode for good.

This keeps the admin console usable offline, while still preferring the
shared remote store whenever it answers. The two stores are never
reconciled, so they can drift apart.
"""

from typing import Any, Optional

from teambudget.audit import AuditLogger
from teambudget.models.budget import Expenditure, Member, Team
from teambudget.services.storage.interface import (
    BudgetStorageInterface,
    StorageError,
)


class FallbackBudgetStorage(BudgetStorageInterface):
    """
    Tries the primary backend, then the secondary, per call.

    With no primary configured every call goes straight to the secondary,
    silently. If the secondary also fails its StorageError propagates.
    """

    def __init__(
        self,
        primary: Optional[BudgetStorageInterface],
        secondary: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._primary = primary
        self._secondary = secondary
        self._audit_logger = audit_logger or AuditLogger()

    @property
    def name(self) -> str:
        if self._primary is None:
            return self._secondary.name
        return f"{self._primary.name}+{self._secondary.name}"

    async def _attempt(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        if self._primary is not None:
            try:
                return await getattr(self._primary, operation)(*args, **kwargs)
            except StorageError as e:
                self._audit_logger.log_fallback(
                    operation=operation,
                    primary=self._primary.name,
                    secondary=self._secondary.name,
                    error=e,
                )
        return await getattr(self._secondary, operation)(*args, **kwargs)

    async def list_teams(self) -> list[Team]:
        return await self._attempt("list_teams")

    async def get_team(self, team_id: str) -> Optional[Team]:
        return await self._attempt("get_team", team_id)

    async def insert_team(self, team: Team) -> Team:
        return await self._attempt("insert_team", team)

    async def update_team(self, team_id: str, changes: dict[str, Any]) -> Optional[Team]:
        return await self._attempt("update_team", team_id, changes)

    async def delete_team(self, team_id: str) -> bool:
        return await self._attempt("delete_team", team_id)

    async def seed_teams(self, teams: list[Team]) -> int:
        return await self._attempt("seed_teams", teams)

    async def list_members(self, team_id: Optional[str] = None) -> list[Member]:
        return await self._attempt("list_members", team_id)

    async def get_member(self, member_id: str) -> Optional[Member]:
        return await self._attempt("get_member", member_id)

    async def insert_member(self, member: Member) -> Member:
        return await self._attempt("insert_member", member)

    async def update_member(self, member_id: str, changes: dict[str, Any]) -> Optional[Member]:
        return await self._attempt("update_member", member_id, changes)

    async def delete_member(self, member_id: str) -> bool:
        return await self._attempt("delete_member", member_id)

    async def list_expenditures(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Expenditure]:
        return await self._attempt("list_expenditures", start, end)

    async def get_expenditure(self, expenditure_id: str) -> Optional[Expenditure]:
        return await self._attempt("get_expenditure", expenditure_id)

    async def insert_expenditure(self, expenditure: Expenditure) -> Expenditure:
        return await self._attempt("insert_expenditure", expenditure)

    async def update_expenditure(
        self,
        expenditure_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expenditure]:
        return await self._attempt("update_expenditure", expenditure_id, changes)

    async def delete_expenditure(self, expenditure_id: str) -> bool:
        return await self._attempt("delete_expenditure", expenditure_id)
