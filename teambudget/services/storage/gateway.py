"""
Persistence Gateway

The one storage contract the rest of the system talks to. It sits on
top of any BudgetStorageInterface (normally the fallback decorator over
the remote and local backends) and adds what every backend would
otherwise have to repeat:

1. Month windows: callers ask for (year, month index), never date ranges
2. Input validation through the write models
3. The amount invariant (amount == unit_price * quantity) on every write
4. Historical name snapshots on every expenditure write
5. Failure values instead of exceptions: None, False or [] after logging

Validation errors (pydantic ValidationError) are NOT swallowed; they go
straight back to the caller with their field-level messages.
"""

import time
from typing import Any, Awaitable, Optional, TypeVar, Union

from pydantic import BaseModel

from teambudget.aggregation import member_spending
from teambudget.attribution import snapshot_names
from teambudget.audit import AuditLogger
from teambudget.dates import reference_now, resolve_month_window
from teambudget.models.audit import AuditEventBuilder, AuditEventType
from teambudget.models.budget import (
    DEFAULT_TEAM_COLOR,
    Expenditure,
    ExpenditureCreate,
    ExpenditureUpdate,
    Member,
    MemberCreate,
    MemberUpdate,
    MemberWithSpending,
    Team,
    TeamUpdate,
    coerce_budget,
    default_teams,
)
from teambudget.services.storage.interface import (
    BudgetStorageInterface,
    StorageError,
)


T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)

_last_record_id = 0


def new_record_id() -> str:
    """
    Time-based record id (milliseconds since the epoch).

    Two ids requested in the same millisecond are bumped apart.
    """
    global _last_record_id
    candidate = time.time_ns() // 1_000_000
    if candidate <= _last_record_id:
        candidate = _last_record_id + 1
    _last_record_id = candidate
    return str(candidate)


def _as_model(model: type[ModelT], value: Union[ModelT, dict[str, Any]]) -> ModelT:
    if isinstance(value, model):
        return value
    return model.model_validate(value)


class PersistenceGateway:
    """
    Caller-facing persistence contract.

    Every operation is async and independently safe to retry.
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()

    @property
    def storage(self) -> BudgetStorageInterface:
        return self._storage

    async def _guard(self, operation: str, awaitable: Awaitable[T], default: T) -> T:
        """Await a storage call, turning a StorageError into a failure value."""
        try:
            return await awaitable
        except StorageError as e:
            self._audit_logger.log_failure(operation, e)
            return default

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    async def get_teams(self) -> list[Team]:
        """All teams, sorted by name."""
        return await self._guard("get_teams", self._storage.list_teams(), [])

    async def create_team(
        self,
        name: str,
        budget: Any = None,
        color: str = DEFAULT_TEAM_COLOR,
    ) -> Optional[Team]:
        """
        Create a team with a fresh time-based id.

        The budget is coerced to a non-negative integer; a missing or
        unparseable budget becomes 0.
        """
        team = Team(
            id=new_record_id(),
            name=name,
            budget=coerce_budget(budget),
            color=color,
            created_at=reference_now(),
        )
        created = await self._guard("create_team", self._storage.insert_team(team), None)
        if created is not None:
            self._audit_logger.log_change(
                AuditEventType.TEAM_CREATED, "team", created.id,
                name=created.name, budget=created.budget,
            )
        return created

    async def update_team(
        self,
        team_id: str,
        updates: Union[TeamUpdate, dict[str, Any]],
    ) -> Optional[Team]:
        """Partial update; None if the team does not exist."""
        changes = _as_model(TeamUpdate, updates).changes()
        updated = await self._guard(
            "update_team", self._storage.update_team(team_id, changes), None
        )
        if updated is not None:
            self._audit_logger.log_change(
                AuditEventType.TEAM_UPDATED, "team", team_id, fields=sorted(changes)
            )
        return updated

    async def update_team_name(self, team_id: str, name: str) -> Optional[Team]:
        return await self.update_team(team_id, TeamUpdate(name=name))

    async def update_team_budget(self, team_id: str, new_budget: Any) -> Optional[Team]:
        """Set the monthly budget. None removes the cap."""
        budget = None if new_budget is None else coerce_budget(new_budget)
        return await self.update_team(team_id, TeamUpdate(budget=budget))

    async def delete_team(self, team_id: str) -> bool:
        """
        Delete a team and all of its expenditures.

        Expenditures go first. If the team delete then fails, they stay
        deleted: this is best-effort, not a transaction.
        """
        deleted = await self._guard("delete_team", self._storage.delete_team(team_id), False)
        if deleted:
            self._audit_logger.log_change(AuditEventType.TEAM_DELETED, "team", team_id)
        return deleted

    async def initialize_teams(self) -> bool:
        """Seed the default teams into an empty store. Never overwrites."""
        seeded = await self._guard(
            "initialize_teams", self._storage.seed_teams(default_teams()), None
        )
        if seeded is None:
            return False
        if seeded:
            self._audit_logger.log(AuditEventBuilder.teams_seeded(seeded))
        return True

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def get_team_members(self, team_id: Optional[str] = None) -> list[Member]:
        """Members sorted by name; all teams when team_id is omitted."""
        return await self._guard("get_team_members", self._storage.list_members(team_id), [])

    async def create_member(
        self,
        data: Union[MemberCreate, dict[str, Any]],
    ) -> Optional[Member]:
        create = _as_model(MemberCreate, data)
        member = Member(
            id=new_record_id(),
            team_id=create.team_id,
            name=create.name,
            created_at=reference_now(),
        )
        created = await self._guard("create_member", self._storage.insert_member(member), None)
        if created is not None:
            self._audit_logger.log_change(
                AuditEventType.MEMBER_CREATED, "member", created.id, team_id=created.team_id
            )
        return created

    async def update_member(
        self,
        member_id: str,
        updates: Union[MemberUpdate, dict[str, Any]],
    ) -> Optional[Member]:
        """Partial update; changing team_id moves the member."""
        changes = _as_model(MemberUpdate, updates).changes()
        updated = await self._guard(
            "update_member", self._storage.update_member(member_id, changes), None
        )
        if updated is not None:
            self._audit_logger.log_change(
                AuditEventType.MEMBER_UPDATED, "member", member_id, fields=sorted(changes)
            )
        return updated

    async def delete_member(self, member_id: str) -> bool:
        """Delete a member, keeping their expenditures as historical spend."""
        deleted = await self._guard(
            "delete_member", self._storage.delete_member(member_id), False
        )
        if deleted:
            self._audit_logger.log_change(AuditEventType.MEMBER_DELETED, "member", member_id)
        return deleted

    # ------------------------------------------------------------------
    # Expenditures
    # ------------------------------------------------------------------

    async def get_expenditures(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> list[Expenditure]:
        """
        Expenditures of one month, most recent first.

        month is zero-based. Without both year and month the current
        reference month is used.
        """
        window = resolve_month_window(year, month)
        return await self._guard(
            "get_expenditures",
            self._storage.list_expenditures(window.start, window.end),
            [],
        )

    async def _snapshot_names(self, team_id: str, member_id: Optional[str]) -> dict[str, Any]:
        """Current team/member names, to be frozen onto an expenditure."""
        team = await self._storage.get_team(team_id)
        member = None
        if member_id is not None:
            member = await self._storage.get_member(member_id)
        return snapshot_names(team, member)

    async def _insert_expenditure(self, create: ExpenditureCreate) -> Expenditure:
        names = await self._snapshot_names(create.team_id, create.member_id)
        expenditure = create.model_copy(update=names).to_expenditure(
            expenditure_id=new_record_id(),
            created_at=reference_now(),
        )
        return await self._storage.insert_expenditure(expenditure)

    async def add_expenditure_with_member(
        self,
        data: Union[ExpenditureCreate, dict[str, Any]],
    ) -> Optional[Expenditure]:
        """
        Record an expenditure, attached to a member when one is given.

        This is the single expenditure write path: the amount invariant
        and the historical name snapshot are applied here.
        """
        create = _as_model(ExpenditureCreate, data)
        created = await self._guard(
            "add_expenditure_with_member", self._insert_expenditure(create), None
        )
        if created is not None:
            self._audit_logger.log_change(
                AuditEventType.EXPENDITURE_CREATED, "expenditure", created.id,
                team_id=created.team_id, member_id=created.member_id, amount=str(created.amount),
            )
        return created

    async def add_expenditure(
        self,
        data: Union[ExpenditureCreate, dict[str, Any]],
    ) -> Optional[Expenditure]:
        """Record an unassigned expenditure."""
        create = _as_model(ExpenditureCreate, data)
        return await self.add_expenditure_with_member(
            create.model_copy(update={"member_id": None, "member_name_historical": None})
        )

    async def _apply_expenditure_update(
        self,
        expenditure_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expenditure]:
        existing = await self._storage.get_expenditure(expenditure_id)
        if existing is None:
            return None

        # Re-validate the merged record so the amount invariant still holds
        merged = existing.model_dump(exclude={"id", "created_at"})
        if "amount" not in changes:
            merged.pop("amount")
        merged.update(changes)
        validated = ExpenditureCreate.model_validate(merged)
        changes["amount"] = validated.amount

        if "team_id" in changes or "member_id" in changes:
            if "member_id" in changes and validated.member_id is None:
                changes["member_name_historical"] = None
            names = await self._snapshot_names(validated.team_id, validated.member_id)
            if "team_id" not in changes:
                names.pop("team_name_historical", None)
            changes.update(names)

        return await self._storage.update_expenditure(expenditure_id, changes)

    async def update_expenditure(
        self,
        expenditure_id: str,
        updates: Union[ExpenditureUpdate, dict[str, Any]],
    ) -> Optional[Expenditure]:
        """
        Partial update; may change any field including team and member.

        The amount is recomputed from unit_price and quantity, and the
        historical names are refreshed when the assignment changes.
        """
        changes = _as_model(ExpenditureUpdate, updates).changes()
        updated = await self._guard(
            "update_expenditure",
            self._apply_expenditure_update(expenditure_id, changes),
            None,
        )
        if updated is not None:
            self._audit_logger.log_change(
                AuditEventType.EXPENDITURE_UPDATED, "expenditure", expenditure_id,
                fields=sorted(changes),
            )
        return updated

    async def assign_member_to_expenditure(self, expenditure_id: str, member_id: str) -> bool:
        updated = await self.update_expenditure(expenditure_id, {"member_id": member_id})
        return updated is not None

    async def delete_expenditure(self, expenditure_id: str) -> bool:
        deleted = await self._guard(
            "delete_expenditure", self._storage.delete_expenditure(expenditure_id), False
        )
        if deleted:
            self._audit_logger.log_change(
                AuditEventType.EXPENDITURE_DELETED, "expenditure", expenditure_id
            )
        return deleted

    async def _backfill(self) -> int:
        teams = {team.id: team for team in await self._storage.list_teams()}
        members = {member.id: member for member in await self._storage.list_members()}

        updated = 0
        for exp in await self._storage.list_expenditures():
            changes = {}
            if not exp.team_name_historical and exp.team_id in teams:
                changes["team_name_historical"] = teams[exp.team_id].name
            if exp.member_id and not exp.member_name_historical and exp.member_id in members:
                changes["member_name_historical"] = members[exp.member_id].name
            if changes and await self._storage.update_expenditure(exp.id, changes):
                updated += 1
        return updated

    async def backfill_historical_names(self) -> int:
        """
        Fill missing historical names from the live teams and members.

        Returns:
            Number of expenditures updated
        """
        updated = await self._guard("backfill_historical_names", self._backfill(), 0)
        if updated:
            self._audit_logger.log(AuditEventBuilder.historical_names_backfilled(updated))
        return updated

    # ------------------------------------------------------------------
    # Single-member view
    # ------------------------------------------------------------------

    async def get_member_with_spending(
        self,
        member_id: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> Optional[MemberWithSpending]:
        """One member's figures for a month, None if the member is gone."""

        async def load() -> Optional[MemberWithSpending]:
            member = await self._storage.get_member(member_id)
            if member is None:
                return None
            team = await self._storage.get_team(member.team_id)
            teammates = await self._storage.list_members(member.team_id)
            window = resolve_month_window(year, month)
            expenditures = await self._storage.list_expenditures(window.start, window.end)
            return member_spending(member, team, len(teammates), expenditures)

        return await self._guard("get_member_with_spending", load(), None)
