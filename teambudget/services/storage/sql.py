"""
Remote Relational Storage Implementation

DESIGN DECISION: The preferred backend is any relational database that
SQLAlchemy can reach (PostgreSQL in production, SQLite for development
and tests). It is shared and durable, so it is always tried first.

TRADEOFFS:
- SQLAlchemy Core, not the ORM: rows map straight onto pydantic models
- Dates and timestamps are stored as ISO strings so month windows are
  plain lexical range comparisons on every dialect
- Multi-step deletes run as separate statements, in dependency order

The implementation follows the abstract interface, so the fallback
decorator can wrap it without knowing which database is behind it.
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator, Optional

from pydantic import ValidationError
from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, stop_after_attempt, wait_exponential

from teambudget.models.budget import Expenditure, Member, Team
from teambudget.services.storage.interface import (
    BudgetStorageInterface,
    ConnectionError,
    SchemaError,
    StorageError,
)


metadata = MetaData()

teams_table = Table(
    "teams",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("budget", Integer, nullable=True),
    Column("color", String(7), nullable=False),
    Column("created_at", String(40), nullable=True),
)

members_table = Table(
    "members",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("team_id", String(64), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(100), nullable=False),
    Column("created_at", String(40), nullable=True),
)

expenditures_table = Table(
    "expenditures",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("team_id", String(64), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
    Column("member_id", String(64), ForeignKey("members.id", ondelete="SET NULL"), nullable=True),
    Column("amount", Numeric(14, 4), nullable=False),
    Column("unit_price", Numeric(14, 4), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("description", Text, nullable=False),
    Column("date", String(10), nullable=False, index=True),
    Column("created_at", String(40), nullable=False),
    Column("team_name_historical", String(100), nullable=True),
    Column("member_name_historical", String(100), nullable=True),
)

# Columns an older schema may lack; inserts retry without them
OPTIONAL_EXPENDITURE_COLUMNS = (
    "member_id",
    "team_name_historical",
    "member_name_historical",
)

_MISSING_COLUMN_MARKERS = (
    "no column",
    "no such column",
    "does not exist",
    "unknown column",
)


def _to_db(values: dict[str, Any]) -> dict[str, Any]:
    """Convert model values to column values (dates as ISO strings)."""
    converted = {}
    for key, value in values.items():
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        converted[key] = value
    return converted


def _missing_columns(error: DBAPIError, candidates: tuple[str, ...]) -> list[str]:
    message = str(error.orig).lower()
    if not any(marker in message for marker in _MISSING_COLUMN_MARKERS):
        return []
    return [column for column in candidates if column in message]


class SqlClient:
    """
    Owns the SQLAlchemy engine.

    Constructed once at process start and passed to the storage, so there
    is no module-level connection.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        connect_attempts: int = 3,
    ):
        self._url = url
        self._connect_attempts = connect_attempts
        self._engine = create_engine(url, echo=echo, **self._engine_options(url))

    @staticmethod
    def _engine_options(url: str) -> dict[str, Any]:
        # In-memory SQLite must share one connection or every call sees an empty DB
        if url.startswith("sqlite") and (url.rstrip("/").endswith("sqlite:") or ":memory:" in url):
            return {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        return {"pool_pre_ping": True}

    @property
    def engine(self) -> Engine:
        return self._engine

    def verify_connection(self) -> None:
        """
        Check the database answers, retrying with exponential backoff.

        Called once at startup. Per-operation calls are not retried so that
        failover to the local store stays immediate.
        """
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                reraise=True,
            ):
                with attempt:
                    with self._engine.connect() as conn:
                        conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ConnectionError(f"Failed to connect to database: {e}")

    def create_schema(self) -> None:
        """Create any missing tables."""
        try:
            metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise SchemaError(f"Failed to create schema: {e}")

    def dispose(self) -> None:
        self._engine.dispose()


class SqlBudgetStorage(BudgetStorageInterface):
    """
    Relational implementation of budget storage.

    Ids are assigned by the caller; the database never generates them.
    """

    name = "sql"

    def __init__(self, client: SqlClient):
        self._client = client

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except StorageError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to {action}: {e}") from e
        except ValidationError as e:
            raise SchemaError(f"Unexpected row shape while trying to {action}: {e}") from e

    def _fetch_one(self, conn, table: Table, record_id: str) -> Optional[dict[str, Any]]:
        row = conn.execute(select(table).where(table.c.id == record_id)).first()
        return dict(row._mapping) if row is not None else None

    def _read_expenditures(self, conn, *criteria, ordered: bool = False) -> list[dict[str, Any]]:
        """
        Select expenditure rows, tolerating a schema without the optional
        columns. Columns the table lacks come back as None.
        """
        dropped: list[str] = []
        while True:
            columns = [c for c in expenditures_table.c if c.name not in dropped]
            query = select(*columns)
            if criteria:
                query = query.where(*criteria)
            if ordered:
                query = query.order_by(
                    expenditures_table.c.date.desc(),
                    expenditures_table.c.created_at.desc(),
                )
            try:
                rows = conn.execute(query).all()
                break
            except DBAPIError as e:
                missing = [
                    column for column in _missing_columns(e, OPTIONAL_EXPENDITURE_COLUMNS)
                    if column not in dropped
                ]
                if not missing:
                    raise
                # PostgreSQL aborts the transaction on a failed statement
                conn.rollback()
                dropped.extend(missing)

        defaults = dict.fromkeys(dropped)
        return [{**defaults, **row._mapping} for row in rows]

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    async def list_teams(self) -> list[Team]:
        with self._errors("list teams"):
            with self._client.engine.connect() as conn:
                rows = conn.execute(select(teams_table).order_by(teams_table.c.name))
                return [Team.model_validate(dict(row._mapping)) for row in rows]

    async def get_team(self, team_id: str) -> Optional[Team]:
        with self._errors("get team"):
            with self._client.engine.connect() as conn:
                row = self._fetch_one(conn, teams_table, team_id)
                return Team.model_validate(row) if row else None

    async def insert_team(self, team: Team) -> Team:
        with self._errors("create team"):
            with self._client.engine.begin() as conn:
                conn.execute(insert(teams_table).values(**_to_db(team.model_dump())))
            return team

    async def update_team(self, team_id: str, changes: dict[str, Any]) -> Optional[Team]:
        with self._errors("update team"):
            with self._client.engine.begin() as conn:
                if changes:
                    conn.execute(
                        update(teams_table)
                        .where(teams_table.c.id == team_id)
                        .values(**_to_db(changes))
                    )
                row = self._fetch_one(conn, teams_table, team_id)
                return Team.model_validate(row) if row else None

    async def delete_team(self, team_id: str) -> bool:
        # Step 1: the team's expenditures
        with self._errors("delete team expenditures"):
            with self._client.engine.begin() as conn:
                conn.execute(
                    delete(expenditures_table)
                    .where(expenditures_table.c.team_id == team_id)
                )

        # Step 2: its members (clearing references elsewhere), then the team
        with self._errors("delete team"):
            with self._client.engine.begin() as conn:
                member_ids = select(members_table.c.id).where(members_table.c.team_id == team_id)
                conn.execute(
                    update(expenditures_table)
                    .where(expenditures_table.c.member_id.in_(member_ids))
                    .values(member_id=None)
                )
                conn.execute(delete(members_table).where(members_table.c.team_id == team_id))
                result = conn.execute(delete(teams_table).where(teams_table.c.id == team_id))
                return result.rowcount > 0

    async def seed_teams(self, teams: list[Team]) -> int:
        with self._errors("seed teams"):
            with self._client.engine.begin() as conn:
                existing = conn.execute(select(func.count()).select_from(teams_table)).scalar_one()
                if existing:
                    return 0
                conn.execute(
                    insert(teams_table),
                    [_to_db(team.model_dump()) for team in teams],
                )
                return len(teams)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def list_members(self, team_id: Optional[str] = None) -> list[Member]:
        with self._errors("list members"):
            query = select(members_table)
            if team_id is not None:
                query = query.where(members_table.c.team_id == team_id)
            with self._client.engine.connect() as conn:
                rows = conn.execute(query.order_by(members_table.c.name))
                return [Member.model_validate(dict(row._mapping)) for row in rows]

    async def get_member(self, member_id: str) -> Optional[Member]:
        with self._errors("get member"):
            with self._client.engine.connect() as conn:
                row = self._fetch_one(conn, members_table, member_id)
                return Member.model_validate(row) if row else None

    async def insert_member(self, member: Member) -> Member:
        with self._errors("create member"):
            with self._client.engine.begin() as conn:
                conn.execute(insert(members_table).values(**_to_db(member.model_dump())))
            return member

    async def update_member(self, member_id: str, changes: dict[str, Any]) -> Optional[Member]:
        with self._errors("update member"):
            with self._client.engine.begin() as conn:
                if changes:
                    conn.execute(
                        update(members_table)
                        .where(members_table.c.id == member_id)
                        .values(**_to_db(changes))
                    )
                row = self._fetch_one(conn, members_table, member_id)
                return Member.model_validate(row) if row else None

    async def delete_member(self, member_id: str) -> bool:
        with self._errors("delete member"):
            with self._client.engine.begin() as conn:
                # Done explicitly: not every dialect enforces ON DELETE SET NULL
                conn.execute(
                    update(expenditures_table)
                    .where(expenditures_table.c.member_id == member_id)
                    .values(member_id=None)
                )
                result = conn.execute(delete(members_table).where(members_table.c.id == member_id))
                return result.rowcount > 0

    # ------------------------------------------------------------------
    # Expenditures
    # ------------------------------------------------------------------

    async def list_expenditures(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Expenditure]:
        criteria = []
        if start is not None:
            criteria.append(expenditures_table.c.date >= start)
        if end is not None:
            criteria.append(expenditures_table.c.date <= end)
        with self._errors("list expenditures"):
            with self._client.engine.connect() as conn:
                rows = self._read_expenditures(conn, *criteria, ordered=True)
            return [Expenditure.model_validate(row) for row in rows]

    async def get_expenditure(self, expenditure_id: str) -> Optional[Expenditure]:
        with self._errors("get expenditure"):
            with self._client.engine.connect() as conn:
                rows = self._read_expenditures(conn, expenditures_table.c.id == expenditure_id)
            return Expenditure.model_validate(rows[0]) if rows else None

    def _write_expenditure(self, statement, values: dict[str, Any]) -> list[str]:
        """
        Execute an insert or update, retrying without optional columns the
        table lacks. Returns the columns that had to be dropped.
        """
        dropped: list[str] = []
        while True:
            try:
                if not values:
                    return dropped
                with self._client.engine.begin() as conn:
                    conn.execute(statement.values(**values))
                return dropped
            except DBAPIError as e:
                missing = [
                    column for column in _missing_columns(e, OPTIONAL_EXPENDITURE_COLUMNS)
                    if column in values
                ]
                if not missing:
                    raise
                # Older schema: write what it can hold rather than lose the spend
                dropped.extend(missing)
                values = {k: v for k, v in values.items() if k not in missing}

    async def insert_expenditure(self, expenditure: Expenditure) -> Expenditure:
        with self._errors("create expenditure"):
            dropped = self._write_expenditure(
                insert(expenditures_table), _to_db(expenditure.model_dump())
            )
        if dropped:
            return expenditure.model_copy(update=dict.fromkeys(dropped))
        return expenditure

    async def update_expenditure(
        self,
        expenditure_id: str,
        changes: dict[str, Any],
    ) -> Optional[Expenditure]:
        with self._errors("update expenditure"):
            if changes:
                self._write_expenditure(
                    update(expenditures_table).where(expenditures_table.c.id == expenditure_id),
                    _to_db(changes),
                )
        return await self.get_expenditure(expenditure_id)

    async def delete_expenditure(self, expenditure_id: str) -> bool:
        with self._errors("delete expenditure"):
            with self._client.engine.begin() as conn:
                result = conn.execute(
                    delete(expenditures_table)
                    .where(expenditures_table.c.id == expenditure_id)
                )
                return result.rowcount > 0
