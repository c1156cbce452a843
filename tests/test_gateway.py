"""
Persistence gateway tests.

The gateway runs over the fallback decorator with a real local store as
secondary. The primary is either a SQLite-backed relational store or a
stub whose every call fails, to exercise failover.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import text

from teambudget.attribution import AttributionResolver
from teambudget.services.storage.fallback import FallbackBudgetStorage
from teambudget.services.storage.gateway import PersistenceGateway, new_record_id
from teambudget.services.storage.interface import BudgetStorageInterface, StorageError
from teambudget.services.storage.local import LocalBudgetStorage
from teambudget.services.storage.sql import SqlBudgetStorage, SqlClient


def run(coro):
    return asyncio.run(coro)


class UnreachableStorage(BudgetStorageInterface):
    """A backend whose every operation fails, recording what was tried."""

    name = "unreachable"

    def __init__(self):
        self.calls: list[str] = []

    async def _fail(self, operation: str):
        self.calls.append(operation)
        raise StorageError(f"{operation}: connection refused")

    async def list_teams(self):
        return await self._fail("list_teams")

    async def get_team(self, team_id):
        return await self._fail("get_team")

    async def insert_team(self, team):
        return await self._fail("insert_team")

    async def update_team(self, team_id, changes):
        return await self._fail("update_team")

    async def delete_team(self, team_id):
        return await self._fail("delete_team")

    async def seed_teams(self, teams):
        return await self._fail("seed_teams")

    async def list_members(self, team_id=None):
        return await self._fail("list_members")

    async def get_member(self, member_id):
        return await self._fail("get_member")

    async def insert_member(self, member):
        return await self._fail("insert_member")

    async def update_member(self, member_id, changes):
        return await self._fail("update_member")

    async def delete_member(self, member_id):
        return await self._fail("delete_member")

    async def list_expenditures(self, start=None, end=None):
        return await self._fail("list_expenditures")

    async def get_expenditure(self, expenditure_id):
        return await self._fail("get_expenditure")

    async def insert_expenditure(self, expenditure):
        return await self._fail("insert_expenditure")

    async def update_expenditure(self, expenditure_id, changes):
        return await self._fail("update_expenditure")

    async def delete_expenditure(self, expenditure_id):
        return await self._fail("delete_expenditure")


class TestRecordIds:
    """Time-based ids."""

    def test_ids_are_unique_and_increasing(self):
        ids = [int(new_record_id()) for _ in range(200)]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)


class TestGatewayOnLocalStore:
    """Gateway semantics with the local store only."""

    def setup_method(self):
        self.gateway = PersistenceGateway(FallbackBudgetStorage(None, LocalBudgetStorage()))

    def create_team_with_members(self, budget=1000, names=("M1", "M2")):
        team = run(self.gateway.create_team("Team A", budget))
        members = [
            run(self.gateway.create_member({"team_id": team.id, "name": name}))
            for name in names
        ]
        return team, members

    def add(self, team_id, member_id=None, unit_price="50", quantity=2, day=date(2024, 3, 10)):
        return run(self.gateway.add_expenditure_with_member({
            "team_id": team_id,
            "member_id": member_id,
            "unit_price": unit_price,
            "quantity": quantity,
            "description": "Licences",
            "date": day,
        }))

    def test_create_team_coerces_budget(self):
        assert run(self.gateway.create_team("Team A")).budget == 0
        assert run(self.gateway.create_team("Team B", float("nan"))).budget == 0
        assert run(self.gateway.create_team("Team C", 1500.7)).budget == 1500

    def test_create_team_rejects_empty_name(self):
        with pytest.raises(ValidationError):
            run(self.gateway.create_team("   ", 100))

    def test_initialize_teams_is_idempotent(self):
        assert run(self.gateway.initialize_teams()) is True
        assert run(self.gateway.initialize_teams()) is True
        teams = run(self.gateway.get_teams())
        assert len(teams) == 4
        assert {t.name for t in teams} == {"Chen Long", "李行舟", "天意", "沉浮"}

    def test_initialize_never_overwrites(self):
        run(self.gateway.create_team("Mine", 10))
        run(self.gateway.initialize_teams())
        assert [t.name for t in run(self.gateway.get_teams())] == ["Mine"]

    def test_update_team_budget_and_name(self):
        team = run(self.gateway.create_team("Team A", 1000))

        assert run(self.gateway.update_team_budget(team.id, 2500)).budget == 2500
        assert run(self.gateway.update_team_budget(team.id, None)).budget is None
        renamed = run(self.gateway.update_team_name(team.id, "Team Z"))
        assert renamed.name == "Team Z"
        assert renamed.budget is None

    def test_update_unknown_team_returns_none(self):
        assert run(self.gateway.update_team("nope", {"name": "X"})) is None

    def test_amount_is_writer_enforced(self):
        team, _ = self.create_team_with_members()
        exp = self.add(team.id, unit_price="12.50", quantity=3)
        assert exp.amount == Decimal("37.50")

    def test_inconsistent_amount_is_rejected(self):
        team, _ = self.create_team_with_members()
        with pytest.raises(ValidationError):
            run(self.gateway.add_expenditure_with_member({
                "team_id": team.id,
                "unit_price": "10",
                "quantity": 2,
                "amount": "30",
                "description": "Seats",
            }))

    def test_write_path_snapshots_names(self):
        team, (m1, _) = self.create_team_with_members()
        exp = self.add(team.id, m1.id)
        assert exp.team_name_historical == "Team A"
        assert exp.member_name_historical == "M1"

    def test_add_expenditure_is_unassigned(self):
        team, (m1, _) = self.create_team_with_members()
        exp = run(self.gateway.add_expenditure({
            "team_id": team.id,
            "member_id": m1.id,
            "unit_price": "5",
            "quantity": 1,
            "description": "Coffee",
        }))
        assert exp.member_id is None
        assert exp.member_name_historical is None

    def test_get_expenditures_filters_month(self):
        team, _ = self.create_team_with_members()
        self.add(team.id, day=date(2024, 2, 29))
        march = self.add(team.id, day=date(2024, 3, 1))

        assert [e.id for e in run(self.gateway.get_expenditures(2024, 2))] == [march.id]
        assert len(run(self.gateway.get_expenditures(2024, 1))) == 1

    def test_assign_member(self):
        team, (m1, _) = self.create_team_with_members()
        exp = self.add(team.id)

        assert run(self.gateway.assign_member_to_expenditure(exp.id, m1.id)) is True
        stored = run(self.gateway.get_expenditures(2024, 2))[0]
        assert stored.member_id == m1.id
        assert stored.member_name_historical == "M1"

    def test_assign_unknown_expenditure(self):
        assert run(self.gateway.assign_member_to_expenditure("nope", "m1")) is False

    def test_update_expenditure_recomputes_amount(self):
        team, _ = self.create_team_with_members()
        exp = self.add(team.id)

        updated = run(self.gateway.update_expenditure(exp.id, {"quantity": 5}))
        assert updated.amount == Decimal("250")

    def test_update_expenditure_moves_team(self):
        team, _ = self.create_team_with_members()
        other = run(self.gateway.create_team("Team B", 500))
        exp = self.add(team.id)

        moved = run(self.gateway.update_expenditure(exp.id, {"team_id": other.id}))
        assert moved.team_id == other.id
        assert moved.team_name_historical == "Team B"

    def test_unassigning_clears_member_snapshot(self):
        team, (m1, _) = self.create_team_with_members()
        exp = self.add(team.id, m1.id)

        updated = run(self.gateway.update_expenditure(exp.id, {"member_id": None}))
        assert updated.member_id is None
        assert updated.member_name_historical is None

    def test_delete_member_preserves_spend_and_name(self):
        team, (m1, _) = self.create_team_with_members()
        exp = self.add(team.id, m1.id)

        assert run(self.gateway.delete_member(m1.id)) is True
        stored = run(self.gateway.get_expenditures(2024, 2))[0]
        assert stored.id == exp.id
        assert stored.amount == Decimal("100")
        assert stored.member_id is None

        resolver = AttributionResolver(
            run(self.gateway.get_teams()), run(self.gateway.get_team_members())
        )
        assert resolver.resolve_member_name(stored.member_id, stored) == "M1"

    def test_delete_team_removes_its_expenditures(self):
        team, (m1, _) = self.create_team_with_members()
        other = run(self.gateway.create_team("Team B", 500))
        self.add(team.id, m1.id)
        self.add(team.id)
        kept = self.add(other.id)

        assert run(self.gateway.delete_team(team.id)) is True
        remaining = run(self.gateway.get_expenditures(2024, 2))
        assert [e.id for e in remaining] == [kept.id]
        assert all(e.team_id != team.id for e in remaining)
        assert [t.id for t in run(self.gateway.get_teams())] == [other.id]

    def test_delete_unknown_member_returns_false(self):
        assert run(self.gateway.delete_member("nope")) is False

    def test_member_move(self):
        team, (m1, _) = self.create_team_with_members()
        other = run(self.gateway.create_team("Team B", 500))

        moved = run(self.gateway.update_member(m1.id, {"team_id": other.id}))
        assert moved.team_id == other.id
        assert [m.name for m in run(self.gateway.get_team_members(other.id))] == ["M1"]

    def test_backfill_historical_names(self):
        team, (m1, _) = self.create_team_with_members()
        exp = self.add(team.id, m1.id)
        run(self.gateway.storage.update_expenditure(
            exp.id, {"team_name_historical": None, "member_name_historical": None}
        ))

        assert run(self.gateway.backfill_historical_names()) == 1
        assert run(self.gateway.backfill_historical_names()) == 0
        stored = run(self.gateway.get_expenditures(2024, 2))[0]
        assert stored.team_name_historical == "Team A"
        assert stored.member_name_historical == "M1"

    def test_get_member_with_spending(self):
        """Budget 1000, 2 members, 50 x 2 assigned to M1."""
        team, (m1, _) = self.create_team_with_members()
        self.add(team.id, m1.id)

        figures = run(self.gateway.get_member_with_spending(m1.id, 2024, 2))
        assert figures.budget == Decimal("500")
        assert figures.total_spent == Decimal("100")
        assert figures.remaining == Decimal("400")
        assert figures.percentage_used == pytest.approx(20.0)

    def test_get_member_with_spending_unknown(self):
        assert run(self.gateway.get_member_with_spending("nope", 2024, 2)) is None


class TestFailover:
    """Per-call fallback from the remote store to the local store."""

    def setup_method(self):
        self.primary = UnreachableStorage()
        self.local = LocalBudgetStorage()
        self.gateway = PersistenceGateway(FallbackBudgetStorage(self.primary, self.local))

    def test_get_teams_falls_back_without_raising(self):
        run(self.gateway.initialize_teams())

        teams = run(self.gateway.get_teams())
        assert len(teams) == 4
        assert "list_teams" in self.primary.calls

    def test_every_call_retries_the_primary(self):
        run(self.gateway.get_teams())
        run(self.gateway.get_teams())
        assert self.primary.calls.count("list_teams") == 2

    def test_writes_land_in_local_store(self):
        team = run(self.gateway.create_team("Offline", 100))
        assert run(self.local.get_team(team.id)).name == "Offline"

    def test_double_failure_returns_failure_values(self):
        gateway = PersistenceGateway(
            FallbackBudgetStorage(UnreachableStorage(), UnreachableStorage())
        )
        assert run(gateway.get_teams()) == []
        assert run(gateway.create_team("X", 1)) is None
        assert run(gateway.delete_team("1")) is False
        assert run(gateway.initialize_teams()) is False
        assert run(gateway.backfill_historical_names()) == 0


class TestGatewayOnSql:
    """Gateway over a healthy relational store."""

    def setup_method(self):
        self.client = SqlClient("sqlite://")
        self.client.create_schema()
        self.local = LocalBudgetStorage()
        self.gateway = PersistenceGateway(
            FallbackBudgetStorage(SqlBudgetStorage(self.client), self.local)
        )

    def teardown_method(self):
        self.client.dispose()

    def test_writes_go_to_primary(self):
        team = run(self.gateway.create_team("Team A", 1000))
        assert run(self.local.list_teams()) == []
        assert run(self.gateway.get_teams())[0].id == team.id

    def test_scenario_round_trip(self):
        team = run(self.gateway.create_team("Team A", 1000))
        m1 = run(self.gateway.create_member({"team_id": team.id, "name": "M1"}))
        run(self.gateway.create_member({"team_id": team.id, "name": "M2"}))
        exp = run(self.gateway.add_expenditure_with_member({
            "team_id": team.id,
            "member_id": m1.id,
            "unit_price": "50",
            "quantity": 2,
            "description": "Licences",
            "date": date(2024, 3, 10),
        }))

        stored = run(self.gateway.get_expenditures(2024, 2))
        assert [e.id for e in stored] == [exp.id]
        assert stored[0].amount == stored[0].unit_price * stored[0].quantity
        assert stored[0].member_name_historical == "M1"

    def test_missing_schema_falls_back_to_local(self):
        gateway = PersistenceGateway(
            FallbackBudgetStorage(SqlBudgetStorage(SqlClient("sqlite://")), self.local)
        )
        assert run(gateway.initialize_teams()) is True
        assert len(run(self.local.list_teams())) == 4

    def test_team_delete_interrupted_after_expenditures(self):
        team = run(self.gateway.create_team("Team A", 1000))
        run(self.gateway.add_expenditure({
            "team_id": team.id,
            "unit_price": "50",
            "quantity": 2,
            "description": "Licences",
            "date": date(2024, 3, 10),
        }))
        # Second step of the delete needs the members table
        with self.client.engine.begin() as conn:
            conn.execute(text("DROP TABLE members"))

        # Replayed on the local store, which never held the team
        assert run(self.gateway.delete_team(team.id)) is False

        sql = SqlBudgetStorage(self.client)
        assert run(sql.list_expenditures()) == []
        assert run(sql.get_team(team.id)).name == "Team A"
