"""
Local Key/Value Storage Implementation

DESIGN DECISION: The local store mirrors browser-style key/value storage:
three independent string buckets, "teams", "members" and "expenditures",
each holding one JSON array of records. A bucket is always read and
written as a whole array; there is no per-record addressing.

TRADEOFFS:
- Single device only, never reconciled with the remote store
- Every write rewrites the whole bucket (fine for admin-scale data)
- No cascades, so deletes clear references by hand
"""

import json
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from teambudget.models.budget import Expenditure, Member, Team
from teambudget.services.storage.interface import (
    BudgetStorageInterface,
    SchemaError,
    StorageError,
)


TEAMS_BUCKET = "teams"
MEMBERS_BUCKET = "members"
EXPENDITURES_BUCKET = "expenditures"

ModelT = TypeVar("ModelT", bound=BaseModel)


class LocalKeyValueStore:
    """
    String key/value store.

    With a directory, each key is a UTF-8 file "<key>.json" in it.
    Without one, values live in process memory.
    """

    def __init__(self, directory: Optional[Path] = None):
        self._directory = Path(directory) if directory is not None else None
        self._memory: dict[str, str] = {}

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        if self._directory is None:
            return self._memory.get(key)
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read bucket '{key}': {e}")

    def set_item(self, key: str, value: str) -> None:
        if self._directory is None:
            self._memory[key] = value
            return
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so a crash never leaves half a bucket
            tmp_path = self._path(key).with_suffix(".json.tmp")
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(self._path(key))
        except OSError as e:
            raise StorageError(f"Failed to write bucket '{key}': {e}")


class LocalBudgetStorage(BudgetStorageInterface):
    """
    Local fallback implementation of budget storage.

    Records are stored with pydantic's JSON-mode dump, so Decimals travel
    as strings and dates as ISO strings.
    """

    name = "local"

    def __init__(self, store: Optional[LocalKeyValueStore] = None):
        self._store = store or LocalKeyValueStore()

    def _read(self, bucket: str, model: type[ModelT]) -> list[ModelT]:
        raw = self._store.get_item(bucket)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Bucket '{bucket}' is not valid JSON: {e}")
        if not isinstance(records, list):
            raise SchemaError(f"Bucket '{bucket}' does not hold an array")
        try:
            return [model.model_validate(record) for record in records]
        except ValidationError as e:
            raise SchemaError(f"Bucket '{bucket}' holds a malformed record: {e}")

    def _write(self, bucket: str, records: list[BaseModel]) -> None:
        payload = json.dumps(
            [record.model_dump(mode="json") for record in records],
            ensure_ascii=False,
        )
        self._store.set_item(bucket, payload)

    @staticmethod
    def _merge(model: type[ModelT], record: ModelT, changes: dict[str, Any]) -> ModelT:
        return model.model_validate({**record.model_dump(), **changes})

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    async def list_teams(self) -> list[Team]:
        teams = self._read(TEAMS_BUCKET, Team)
        teams.sort(key=lambda t: t.name)
        return teams

    async def get_team(self, team_id: str) -> Optional[Team]:
        for team in self._read(TEAMS_BUCKET, Team):
            if team.id == team_id:
                return team
        return None

    async def insert_team(self, team: Team) -> Team:
        teams = self._read(TEAMS_BUCKET, Team)
        if any(existing.id == team.id for existing in teams):
            raise StorageError(f"Team id already exists: {team.id}")
        teams.append(team)
        self._write(TEAMS_BUCKET, teams)
        return team

    async def update_team(self, team_id: str, changes: dict[str, Any]) -> Optional[Team]:
        teams = self._read(TEAMS_BUCKET, Team)
        for idx, team in enumerate(teams):
            if team.id == team_id:
                teams[idx] = self._merge(Team, team, changes)
                self._write(TEAMS_BUCKET, teams)
                return teams[idx]
        return None

    async def delete_team(self, team_id: str) -> bool:
        # Expenditures first, so a failure never leaves orphans behind
        expenditures = self._read(EXPENDITURES_BUCKET, Expenditure)
        kept = [exp for exp in expenditures if exp.team_id != team_id]
        if len(kept) != len(expenditures):
            self._write(EXPENDITURES_BUCKET, kept)

        # Then the team's members, with the usual member-delete semantics
        for member in await self.list_members(team_id):
            await self.delete_member(member.id)

        teams = self._read(TEAMS_BUCKET, Team)
        remaining = [team for team in teams if team.id != team_id]
        if len(remaining) == len(teams):
            return False
        self._write(TEAMS_BUCKET, remaining)
        return True

    async def seed_teams(self, teams: list[Team]) -> int:
        if self._read(TEAMS_BUCKET, Team):
            return 0
        self._write(TEAMS_BUCKET, teams)
        return len(teams)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def list_members(self, team_id: Optional[str] = None) -> list[Member]:
        members = self._read(MEMBERS_BUCKET, Member)
        if team_id is not None:
            members = [m for m in members if m.team_id == team_id]
        members.sort(key=lambda m: m.name)
        return members

    async def get_member(self, member_id: str) -> Optional[Member]:
        for member in self._read(MEMBERS_BUCKET, Member):
            if member.id == member_id:
                return member
        return None

    async def insert_member(self, member: Member) -> Member:
        members = self._read(MEMBERS_BUCKET, Member)
        if any(existing.id == member.id for existing in members):
            raise StorageError(f"Member id already exists: {member.id}")
        members.append(member)
        self._write(MEMBERS_BUCKET, members)
        return member

    async def update_member(self, member_id: str, changes: dict[str, Any]) -> Optional[Member]:
        members = self._read(MEMBERS_BUCKET, Member)
        for idx, member in enumerate(members):
            if member.id == member_id:
                members[idx] = self._merge(Member, member, changes)
                self._write(MEMBERS_BUCKET, members)
                return members[idx]
        return None

    async def delete_member(self, member_id: str) -> bool:
        members = self._read(MEMBERS_BUCKET, Member)
        remaining = [m for m in members if m.id != member_id]
        if len(remaining) == len(members):
            return False

        # No cascade here: clear the reference, keep the spend
        expenditures = self._read(EXPENDITURES_BUCKET, Expenditure)
        touched = False
        for idx, exp in enumerate(expenditures):
            if exp.member_id == member_id:
                expenditures[idx] = exp.model_copy(update={"member_id": None})
                touched = True
        if touched:
            self._write(EXPENDITURES_BUCKET, expenditures)

        self._write(MEMBERS_BUCKET, remaining)
        return True

    # ------------------------------------------------------------------
    # Expenditures
    # ------------------------------------------------------------------

    async def list_expenditures(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Expenditure]:
        expenditures = []
        for exp in self._read(EXPENDITURES_BUCKET, Expenditure):
            day = exp.date.isoformat()
            if start is not None and day < start:
                continue
            if end is not None and day > end:
                continue
            expenditures.append(exp)

        expenditures.sort(key=lambda e: (e.date, e.created_at), reverse=True)
        return expenditures

    async def get_expenditure(self, expenditure_id: str) -> Optional[Expenditure]:
        for exp in self._read(EXPENDITURES_BUCKET, Expenditure):
            if exp.id == expenditure_id:
                return exp
        return None

    async def insert_expenditure(self, expenditure: Expenditure) -> Expenditure:
        expenditures = self._read(EXPENDITURES_BUCKET, Expenditure)
        if any(existing.id == expenditure.id for existing in expenditures):
            raise StorageError(f"Expenditure id already exists: {expenditure.id}")
        expenditures.append(expenditure)
        self._write(EXPENDITURES_BUCKET, expenditures)
        return expenditure

    async def update_expenditure(
        self,
        expenditure_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expenditure]:
        expenditures = self._read(EXPENDITURES_BUCKET, Expenditure)
        for idx, exp in enumerate(expenditures):
            if exp.id == expenditure_id:
                expenditures[idx] = self._merge(Expenditure, exp, changes)
                self._write(EXPENDITURES_BUCKET, expenditures)
                return expenditures[idx]
        return None

    async def delete_expenditure(self, expenditure_id: str) -> bool:
        expenditures = self._read(EXPENDITURES_BUCKET, Expenditure)
        remaining = [exp for exp in expenditures if exp.id != expenditure_id]
        if len(remaining) == len(expenditures):
            return False
        self._write(EXPENDITURES_BUCKET, remaining)
        return True
