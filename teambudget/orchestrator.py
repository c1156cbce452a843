"""
Application Orchestrator

Builds the storage stack once at process start and exposes the two flows
the UI needs:

    DashboardFlow: month -> teams, members, expenditures -> report
    AdminConsole:  credential gate, full refetch, mutations with messages

DESIGN DECISION: The storage client is constructed explicitly here and
passed down. Nothing below this module reaches for a global connection.
"""

import asyncio
import secrets
from typing import Any, NamedTuple, Optional

from pydantic import BaseModel, Field, ValidationError

from teambudget.aggregation import aggregate_month
from teambudget.attribution import AttributionResolver
from teambudget.audit import AuditLogger
from teambudget.config import Settings, get_settings
from teambudget.dates import current_month
from teambudget.models.audit import AuditEventBuilder
from teambudget.models.budget import Expenditure, Member, MonthlyBudgetReport, Team
from teambudget.services.storage import (
    FallbackBudgetStorage,
    LocalBudgetStorage,
    LocalKeyValueStore,
    PersistenceGateway,
    SqlBudgetStorage,
    SqlClient,
    StorageError,
)


def create_storage_client(
    settings: Optional[Settings] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> Optional[SqlClient]:
    """
    Connect to the remote store, or return None.

    A missing URL is not an error: the system then runs on the local
    store alone. An unreachable database is logged and also yields None.
    """
    settings = settings or get_settings()
    audit_logger = audit_logger or AuditLogger("teambudget.orchestrator")
    db = settings.database
    if not db.is_configured:
        return None

    client = SqlClient(db.url, echo=db.echo, connect_attempts=db.connect_attempts)
    try:
        client.verify_connection()
        if db.auto_create_schema:
            client.create_schema()
    except StorageError as e:
        audit_logger.log_failure("connect_remote_store", e)
        client.dispose()
        return None
    return client


def create_gateway(
    settings: Optional[Settings] = None,
    client: Optional[SqlClient] = None,
    audit_logger: Optional[AuditLogger] = None,
    connect: bool = True,
) -> PersistenceGateway:
    """
    Assemble remote store -> local fallback -> gateway.

    With connect=False and no client the gateway runs on the local store.
    """
    settings = settings or get_settings()
    audit_logger = audit_logger or AuditLogger()
    if client is None and connect:
        client = create_storage_client(settings, audit_logger)

    primary = SqlBudgetStorage(client) if client is not None else None
    secondary = LocalBudgetStorage(LocalKeyValueStore(settings.local_store.directory))
    storage = FallbackBudgetStorage(primary, secondary, audit_logger)
    return PersistenceGateway(storage, audit_logger)


def check_admin_credentials(
    username: str,
    password: str,
    settings: Optional[Settings] = None,
) -> bool:
    """Static comparison against the configured admin literal."""
    admin = (settings or get_settings()).admin
    user_ok = secrets.compare_digest(username.encode(), admin.username.encode())
    password_ok = secrets.compare_digest(password.encode(), admin.password.encode())
    return user_ok and password_ok


class DashboardFlow:
    """Read-only monthly view."""

    def __init__(self, gateway: PersistenceGateway):
        self._gateway = gateway

    async def fetch_month(
        self,
        year: Optional[int] = None,
        month_index: Optional[int] = None,
    ) -> tuple[int, int, list[Team], list[Member], list[Expenditure]]:
        """
        Full refetch for one month, seeding the default teams on first use
        of an empty store. Expenditures keep the gateway's ordering.
        """
        if year is None or month_index is None:
            year, month_index = current_month()

        await self._gateway.initialize_teams()
        teams, members, expenditures = await asyncio.gather(
            self._gateway.get_teams(),
            self._gateway.get_team_members(),
            self._gateway.get_expenditures(year, month_index),
        )
        return year, month_index, teams, members, expenditures

    async def load_month(
        self,
        year: Optional[int] = None,
        month_index: Optional[int] = None,
    ) -> MonthlyBudgetReport:
        """Full refetch and aggregation for one month."""
        year, month_index, teams, members, expenditures = await self.fetch_month(
            year, month_index
        )
        return aggregate_month(teams, members, expenditures, year, month_index)


class ActionResult(NamedTuple):
    """Outcome of an admin mutation, shown to the user as-is."""
    ok: bool
    message: str


class AdminView(BaseModel):
    """Everything the admin console shows after a refetch."""

    report: MonthlyBudgetReport
    teams: list[Team] = Field(default_factory=list)
    members: list[Member] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)


def _validation_text(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"])
    return f"{field}: {first['msg']}" if field else first["msg"]


class AdminConsole:
    """
    Admin operations over the gateway.

    Every mutation returns an ActionResult. Validation problems come back
    as the field message; storage failures as a generic message, since
    the gateway has already logged the cause.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._gateway = gateway
        self._dashboard = DashboardFlow(gateway)
        self._audit_logger = audit_logger or AuditLogger("teambudget.admin")

    def login(self, username: str, password: str) -> bool:
        if check_admin_credentials(username, password):
            return True
        self._audit_logger.log(AuditEventBuilder.admin_login_failed(username))
        return False

    async def load(
        self,
        year: Optional[int] = None,
        month_index: Optional[int] = None,
    ) -> AdminView:
        year, month_index, teams, members, expenditures = await self._dashboard.fetch_month(
            year, month_index
        )
        report = aggregate_month(teams, members, expenditures, year, month_index)
        resolver = AttributionResolver(teams, members)
        rows = [resolver.describe(exp) for exp in expenditures]
        return AdminView(report=report, teams=teams, members=members, rows=rows)

    async def _act(self, awaitable, success: str, failure: str) -> ActionResult:
        try:
            result = await awaitable
        except ValidationError as e:
            return ActionResult(False, _validation_text(e))
        if result is None or result is False:
            return ActionResult(False, failure)
        return ActionResult(True, success)

    # Teams

    async def create_team(self, name: str, budget: Any, color: str) -> ActionResult:
        return await self._act(
            self._gateway.create_team(name, budget, color),
            f"Team '{name}' created.",
            "Failed to create team.",
        )

    async def update_team(
        self,
        team_id: str,
        name: str,
        budget: Optional[int],
        color: Optional[str] = None,
    ) -> ActionResult:
        updates: dict[str, Any] = {"name": name, "budget": budget}
        if color is not None:
            updates["color"] = color
        return await self._act(
            self._gateway.update_team(team_id, updates),
            "Team updated.",
            "Failed to update team.",
        )

    async def delete_team(self, team_id: str) -> ActionResult:
        return await self._act(
            self._gateway.delete_team(team_id),
            "Team and its expenditures deleted.",
            "Failed to delete team.",
        )

    # Members

    async def create_member(self, team_id: str, name: str) -> ActionResult:
        return await self._act(
            self._gateway.create_member({"team_id": team_id, "name": name}),
            f"Member '{name}' added.",
            "Failed to add member.",
        )

    async def update_member(self, member_id: str, name: str, team_id: str) -> ActionResult:
        return await self._act(
            self._gateway.update_member(member_id, {"name": name, "team_id": team_id}),
            "Member updated.",
            "Failed to update member.",
        )

    async def delete_member(self, member_id: str) -> ActionResult:
        return await self._act(
            self._gateway.delete_member(member_id),
            "Member deleted. Their expenditures are kept.",
            "Failed to delete member.",
        )

    # Expenditures

    async def add_expenditure(self, data: dict[str, Any]) -> ActionResult:
        return await self._act(
            self._gateway.add_expenditure_with_member(data),
            "Expenditure recorded.",
            "Failed to record expenditure.",
        )

    async def update_expenditure(self, expenditure_id: str, changes: dict[str, Any]) -> ActionResult:
        return await self._act(
            self._gateway.update_expenditure(expenditure_id, changes),
            "Expenditure updated.",
            "Failed to update expenditure.",
        )

    async def delete_expenditure(self, expenditure_id: str) -> ActionResult:
        return await self._act(
            self._gateway.delete_expenditure(expenditure_id),
            "Expenditure deleted.",
            "Failed to delete expenditure.",
        )

    async def backfill_historical_names(self) -> ActionResult:
        count = await self._gateway.backfill_historical_names()
        return ActionResult(True, f"Historical names filled on {count} expenditures.")


def create_app_components(
    use_remote: bool = True,
) -> tuple[DashboardFlow, AdminConsole, Optional[SqlClient]]:
    """
    Factory function to create all application components.

    Args:
        use_remote: Whether to connect the remote store.
                    Set to False to run on the local store only.

    Returns:
        (dashboard_flow, admin_console, sql_client)
    """
    settings = get_settings()
    audit_logger = AuditLogger()
    client = create_storage_client(settings, audit_logger) if use_remote else None

    gateway = create_gateway(settings, client, audit_logger, connect=False)

    return DashboardFlow(gateway), AdminConsole(gateway, audit_logger), client
