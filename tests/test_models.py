"""
Tests for Team Budget Tracker models

Test strategy:
1. Unit tests for individual models and their validators
2. Storage and gateway behaviour is covered in their own modules
3. No network or database access here
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from teambudget.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from teambudget.models.budget import (
    DEFAULT_TEAM_COLOR,
    TEAM_COLORS,
    Expenditure,
    ExpenditureCreate,
    ExpenditureUpdate,
    MemberCreate,
    MemberUpdate,
    Team,
    TeamUpdate,
    coerce_budget,
    default_teams,
)


class TestCoerceBudget:
    """Budget inputs always become a non-negative integer."""

    def test_none_becomes_zero(self):
        assert coerce_budget(None) == 0

    def test_blank_string_becomes_zero(self):
        assert coerce_budget("   ") == 0

    def test_nan_becomes_zero(self):
        assert coerce_budget(math.nan) == 0

    def test_garbage_becomes_zero(self):
        assert coerce_budget("lots") == 0

    def test_negative_becomes_zero(self):
        assert coerce_budget(-50) == 0

    def test_fraction_is_truncated(self):
        assert coerce_budget(1234.9) == 1234

    def test_numeric_string(self):
        assert coerce_budget("8400") == 8400


class TestTeamModels:
    """Tests for team models."""

    def test_team_defaults(self):
        team = Team(id="t1", name="Platform")
        assert team.budget is None
        assert team.color == DEFAULT_TEAM_COLOR

    def test_team_name_strips_whitespace(self):
        assert Team(id="t1", name="  Platform  ").name == "Platform"

    def test_team_rejects_empty_name(self):
        with pytest.raises(ValidationError):
            Team(id="t1", name="   ")

    def test_team_rejects_negative_budget(self):
        with pytest.raises(ValidationError):
            Team(id="t1", name="Platform", budget=-1)

    def test_team_rejects_bad_color(self):
        with pytest.raises(ValidationError):
            Team(id="t1", name="Platform", color="blue")

    def test_team_update_tracks_only_set_fields(self):
        assert TeamUpdate(name="New").changes() == {"name": "New"}

    def test_team_update_can_clear_budget(self):
        """An explicit None removes the cap."""
        assert TeamUpdate(budget=None).changes() == {"budget": None}

    def test_team_update_cannot_clear_name(self):
        with pytest.raises(ValidationError):
            TeamUpdate(name=None)

    def test_default_teams(self):
        teams = default_teams()
        assert [t.id for t in teams] == ["1", "2", "3", "4"]
        assert [t.budget for t in teams] == [9800, 8400, 8400, 5600]
        assert all(t.color in TEAM_COLORS for t in teams)


class TestMemberModels:
    """Tests for member models."""

    def test_member_create_requires_name(self):
        with pytest.raises(ValidationError):
            MemberCreate(team_id="t1", name="")

    def test_member_update_moves_team(self):
        assert MemberUpdate(team_id="t2").changes() == {"team_id": "t2"}

    def test_member_update_cannot_clear_team(self):
        with pytest.raises(ValidationError):
            MemberUpdate(team_id=None)


class TestExpenditureModels:
    """Tests for the amount invariant and expenditure fields."""

    def test_amount_is_computed(self):
        create = ExpenditureCreate(
            team_id="t1", unit_price=Decimal("50"), quantity=2, description="Licences"
        )
        assert create.amount == Decimal("100")

    def test_matching_amount_is_accepted(self):
        create = ExpenditureCreate(
            team_id="t1",
            unit_price=Decimal("12.50"),
            quantity=3,
            amount=Decimal("37.5"),
            description="Seats",
        )
        assert create.amount == Decimal("37.5")

    def test_mismatched_amount_is_rejected(self):
        with pytest.raises(ValidationError, match="unit_price x quantity"):
            ExpenditureCreate(
                team_id="t1",
                unit_price=Decimal("10"),
                quantity=2,
                amount=Decimal("25"),
                description="Seats",
            )

    @pytest.mark.parametrize("unit_price,quantity", [(0, 1), (-5, 1), (10, 0), (10, -1)])
    def test_non_positive_price_or_quantity_rejected(self, unit_price, quantity):
        with pytest.raises(ValidationError):
            ExpenditureCreate(
                team_id="t1", unit_price=unit_price, quantity=quantity, description="x"
            )

    def test_empty_member_is_unassigned(self):
        create = ExpenditureCreate(
            team_id="t1", member_id="  ", unit_price=1, quantity=1, description="x"
        )
        assert create.member_id is None

    def test_date_defaults_to_reference_today(self):
        create = ExpenditureCreate(team_id="t1", unit_price=1, quantity=1, description="x")
        assert isinstance(create.date, date)

    def test_to_expenditure(self):
        create = ExpenditureCreate(
            team_id="t1",
            member_id="m1",
            unit_price=Decimal("50"),
            quantity=2,
            description="Licences",
            date=date(2024, 3, 5),
        )
        created_at = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)
        exp = create.to_expenditure("e1", created_at)

        assert exp.id == "e1"
        assert exp.amount == Decimal("100")
        assert exp.is_assigned
        assert exp.created_at == created_at

    def test_stored_expenditure_parses_iso_strings(self):
        """Both backends hand back dates as strings."""
        exp = Expenditure.model_validate({
            "id": "e1",
            "team_id": "t1",
            "member_id": "",
            "amount": "100.0000",
            "unit_price": "50",
            "quantity": 2,
            "description": "Licences",
            "date": "2024-03-05",
            "created_at": "2024-03-05T10:00:00+08:00",
        })
        assert exp.date == date(2024, 3, 5)
        assert exp.amount == Decimal("100")
        assert not exp.is_assigned

    def test_update_cannot_clear_required_field(self):
        with pytest.raises(ValidationError):
            ExpenditureUpdate(description=None)

    def test_update_can_unassign_member(self):
        assert ExpenditureUpdate(member_id=None).changes() == {"member_id": None}


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.TEAM_CREATED,
            description="Team t1 created",
        )
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_fallback_event_is_warning(self):
        event = AuditEventBuilder.backend_fallback("get_teams", "sql", "local", "boom")
        assert event.severity == AuditSeverity.WARNING
        assert event.details["operation"] == "get_teams"

    def test_failure_event_is_error(self):
        event = AuditEventBuilder.backend_failure("get_teams", "boom")
        assert event.severity == AuditSeverity.ERROR

    def test_entity_changed_description(self):
        event = AuditEventBuilder.entity_changed(AuditEventType.MEMBER_DELETED, "member", "m1")
        assert event.description == "Member m1 deleted"

    def test_ingest_rejected_severity_follows_status(self):
        assert AuditEventBuilder.ingest_rejected(401, "x").severity == AuditSeverity.WARNING
        assert AuditEventBuilder.ingest_rejected(500, "x").severity == AuditSeverity.ERROR

    def test_to_log_dict(self):
        event = AuditEventBuilder.teams_seeded(4)
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "teams_seeded"
        assert log_dict["details"] == {"count": 4}
