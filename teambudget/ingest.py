"""
Expense Ingestion Endpoint

Lets an external tool append one expenditure by member tag (the member's
name) instead of by id:

    POST /api/add-expense
    Authorization: Bearer <EXPENSE_API_TOKEN>
    {"tag": "alice", "unit_price": 12.5, "quantity": 2, "description": "..."}

Status codes:
- 500 when no token is configured server-side, or the write fails
- 401 for a missing, malformed or wrong bearer token
- 400 for invalid JSON, invalid fields, or when no team exists
- 405 for any method but POST

Every response body is {"status": "success" | "error", "message": ...}.
"""

import json
import secrets
from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from teambudget.audit import AuditLogger
from teambudget.config import get_settings
from teambudget.dates import reference_today
from teambudget.models.audit import AuditEventBuilder
from teambudget.models.budget import Expenditure, ExpenditureCreate
from teambudget.services.storage.gateway import PersistenceGateway


INGEST_PATH = "/api/add-expense"
BEARER_PREFIX = "Bearer "


class IngestPayload(BaseModel):
    """Body of an ingestion request."""
    model_config = ConfigDict(str_strip_whitespace=True)

    tag: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Member name, matched case-insensitively"
    )
    unit_price: Decimal = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=500)


class IngestRejected(Exception):
    """An ingestion request that cannot be completed."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def validation_message(error: ValidationError) -> str:
    """Turn a payload ValidationError into one field-specific sentence."""
    errors = error.errors()
    missing = [str(err["loc"][0]) for err in errors if err["type"] == "missing" and err["loc"]]
    if missing:
        return f"Missing required fields: {', '.join(missing)}."
    first = errors[0]
    field = str(first["loc"][0]) if first["loc"] else "payload"
    return f"{field}: {first['msg']}."


class ExpenseIngestionFlow:
    """
    Resolves a member tag and records the expense through the gateway.

    An unknown tag is not an error: the expense is booked unassigned on
    the first team (by name) and a warning is logged.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._gateway = gateway
        self._audit_logger = audit_logger or AuditLogger("teambudget.ingest")

    async def resolve_tag(self, tag: str) -> tuple[str, Optional[str]]:
        """
        Find (team_id, member_id) for a tag.

        Raises:
            IngestRejected: If there is no team at all
        """
        teams = await self._gateway.get_teams()
        members = await self._gateway.get_team_members()

        wanted = tag.casefold()
        for team in teams:
            for member in members:
                if member.team_id == team.id and member.name.casefold() == wanted:
                    return team.id, member.id

        if not teams:
            raise IngestRejected(400, "No teams available in the system.")

        self._audit_logger.log(AuditEventBuilder.ingest_member_not_found(tag, teams[0].id))
        return teams[0].id, None

    async def ingest(self, payload: IngestPayload) -> Expenditure:
        team_id, member_id = await self.resolve_tag(payload.tag)

        created = await self._gateway.add_expenditure_with_member(
            ExpenditureCreate(
                team_id=team_id,
                member_id=member_id,
                unit_price=payload.unit_price,
                quantity=payload.quantity,
                description=payload.description,
                date=reference_today(),
            )
        )
        if created is None:
            raise IngestRejected(500, "Failed to save expense to database.")

        self._audit_logger.log(
            AuditEventBuilder.expense_ingested(created.id, payload.tag, created.member_id)
        )
        return created


def _reply(status_code: int, message: str) -> JSONResponse:
    status = "success" if status_code == 200 else "error"
    return JSONResponse({"status": status, "message": message}, status_code=status_code)


def _token_matches(header: Optional[str], expected: str) -> bool:
    if not header or not header.startswith(BEARER_PREFIX):
        return False
    token = header[len(BEARER_PREFIX):]
    return secrets.compare_digest(token.encode(), expected.encode())


def create_app(gateway: Optional[PersistenceGateway] = None) -> FastAPI:
    """
    Build the ingestion API.

    Without a gateway the default one is built from settings on first
    use. The expected token is read from settings on every request.
    """
    app = FastAPI(title="Team Budget Tracker Ingestion")
    audit_logger = AuditLogger("teambudget.ingest")
    state: dict[str, Any] = {"flow": None}

    def get_flow() -> ExpenseIngestionFlow:
        if state["flow"] is None:
            if gateway is None:
                from teambudget.orchestrator import create_gateway
                state["flow"] = ExpenseIngestionFlow(create_gateway(), audit_logger)
            else:
                state["flow"] = ExpenseIngestionFlow(gateway, audit_logger)
        return state["flow"]

    def reject(status_code: int, message: str) -> JSONResponse:
        audit_logger.log(AuditEventBuilder.ingest_rejected(status_code, message))
        return _reply(status_code, message)

    @app.post(INGEST_PATH)
    async def add_expense(request: Request) -> JSONResponse:
        expected = get_settings().ingest.expense_api_token
        if not expected:
            return reject(500, "Server configuration error.")

        if not _token_matches(request.headers.get("authorization"), expected):
            return reject(401, "Unauthorized access.")

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return reject(400, "Invalid JSON payload.")
        if not isinstance(body, dict):
            return reject(400, "Invalid JSON payload.")

        try:
            payload = IngestPayload.model_validate(body)
        except ValidationError as e:
            return reject(400, validation_message(e))

        try:
            await get_flow().ingest(payload)
        except IngestRejected as e:
            return reject(e.status_code, e.message)
        except ValidationError as e:
            return reject(400, validation_message(e))

        return _reply(200, "Expense added successfully.")

    @app.api_route(INGEST_PATH, methods=["GET", "HEAD", "PUT", "DELETE", "PATCH", "OPTIONS"])
    async def method_not_allowed() -> JSONResponse:
        return _reply(405, "Method not allowed.")

    return app
