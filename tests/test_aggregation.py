"""
Budget aggregation tests.

The aggregator is pure, so every test builds its inputs in memory.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from teambudget.aggregation import (
    aggregate_month,
    aggregate_team,
    individual_budget,
    member_spending,
    spending_level,
)
from teambudget.models.budget import Expenditure, Member, Team


def make_expenditure(
    exp_id: str,
    team_id: str,
    amount: str,
    member_id: Optional[str] = None,
    day: date = date(2024, 3, 10),
) -> Expenditure:
    return Expenditure(
        id=exp_id,
        team_id=team_id,
        member_id=member_id,
        amount=Decimal(amount),
        unit_price=Decimal(amount),
        quantity=1,
        description=f"Expense {exp_id}",
        date=day,
        created_at=datetime(2024, 3, 10, tzinfo=timezone.utc),
    )


class TestIndividualBudget:
    """Even split of a team budget."""

    def test_even_split(self):
        """9000 across 3 members is exactly 3000 each."""
        assert individual_budget(9000, 3) == Decimal("3000")

    def test_no_members_means_no_cap(self):
        assert individual_budget(9000, 0) is None

    def test_no_budget_means_no_cap(self):
        assert individual_budget(None, 3) is None

    def test_zero_budget_is_a_real_cap(self):
        assert individual_budget(0, 2) == Decimal("0")


class TestMemberSpending:
    """Per-member figures."""

    def setup_method(self):
        self.team = Team(id="a", name="Team A", budget=1000)
        self.m1 = Member(id="m1", team_id="a", name="M1")

    def test_scenario_single_assigned_expense(self):
        """Budget 1000, 2 members, 50 x 2 assigned to M1."""
        expenditures = [make_expenditure("e1", "a", "100", member_id="m1")]
        figures = member_spending(self.m1, self.team, 2, expenditures)

        assert figures.budget == Decimal("500")
        assert figures.total_spent == Decimal("100")
        assert figures.remaining == Decimal("400")
        assert figures.percentage_used == pytest.approx(20.0)

    def test_uncapped_team_has_null_figures(self):
        team = Team(id="a", name="Team A", budget=None)
        figures = member_spending(self.m1, team, 2, [make_expenditure("e1", "a", "100", "m1")])

        assert figures.budget is None
        assert figures.remaining is None
        assert figures.percentage_used is None
        assert figures.total_spent == Decimal("100")

    def test_zero_budget_with_spend_is_over(self):
        team = Team(id="a", name="Team A", budget=0)
        figures = member_spending(self.m1, team, 1, [make_expenditure("e1", "a", "1", "m1")])

        assert figures.remaining == Decimal("-1")
        assert math.isinf(figures.percentage_used)

    def test_zero_budget_without_spend(self):
        team = Team(id="a", name="Team A", budget=0)
        assert member_spending(self.m1, team, 1, []).percentage_used == 0.0

    def test_spend_on_another_team_is_not_counted(self):
        """Spend booked before a team move stays with the old team."""
        expenditures = [make_expenditure("e1", "old", "100", member_id="m1")]
        assert member_spending(self.m1, self.team, 2, expenditures).total_spent == Decimal("0")


class TestAggregateTeam:
    """Team figures over assigned and unassigned spend."""

    def setup_method(self):
        self.team = Team(id="a", name="Team A", budget=1000)
        self.members = [
            Member(id="m1", team_id="a", name="M1"),
            Member(id="m2", team_id="a", name="M2"),
            Member(id="x1", team_id="b", name="Other"),
        ]

    def test_scenario_team_totals(self):
        result = aggregate_team(self.team, self.members, [make_expenditure("e1", "a", "100", "m1")])

        assert result.total_spent == Decimal("100")
        assert result.remaining == Decimal("900")
        assert result.percentage_used == pytest.approx(10.0)
        assert [m.name for m in result.members] == ["M1", "M2"]

    def test_unassigned_spend_counts_toward_team_only(self):
        expenditures = [
            make_expenditure("e1", "a", "100", "m1"),
            make_expenditure("e2", "a", "60"),
        ]
        result = aggregate_team(self.team, self.members, expenditures)

        assert result.total_spent == Decimal("160")
        assert result.unassigned_spent == Decimal("60")
        assert sum(m.total_spent for m in result.members) == Decimal("100")

    def test_other_teams_expenditures_are_ignored(self):
        result = aggregate_team(self.team, self.members, [make_expenditure("e1", "b", "500", "x1")])
        assert result.total_spent == Decimal("0")
        assert result.expenditures == []

    def test_uncapped_team_reports_zero_budget_and_percentage(self):
        team = Team(id="a", name="Team A", budget=None)
        result = aggregate_team(team, self.members, [make_expenditure("e1", "a", "100")])

        assert result.total_budget == 0
        assert result.remaining == Decimal("-100")
        assert result.percentage_used == 0.0

    def test_team_without_members(self):
        result = aggregate_team(self.team, [], [make_expenditure("e1", "a", "250")])
        assert result.members == []
        assert result.unassigned_spent == Decimal("250")


class TestAggregateMonth:
    """Dashboard report over several teams."""

    def test_report_totals(self):
        teams = [
            Team(id="a", name="Team A", budget=1000),
            Team(id="b", name="Team B", budget=500),
        ]
        members = [
            Member(id="m1", team_id="a", name="M1"),
            Member(id="m2", team_id="b", name="M2"),
            Member(id="m3", team_id="b", name="M3"),
        ]
        expenditures = [
            make_expenditure("e1", "a", "100", "m1"),
            make_expenditure("e2", "b", "50"),
            make_expenditure("e3", "b", "999", day=date(2024, 4, 1)),
        ]
        report = aggregate_month(teams, members, expenditures, 2024, 2)

        assert (report.start, report.end) == ("2024-03-01", "2024-03-31")
        assert report.total_budget == 1500
        assert report.total_spent == Decimal("150")
        assert report.total_remaining == Decimal("1350")
        assert report.total_members == 3

    def test_month_index_is_normalized(self):
        report = aggregate_month([], [], [], 2024, 12)
        assert (report.year, report.month_index) == (2025, 0)


class TestSpendingLevel:
    """Progress colour thresholds."""

    @pytest.mark.parametrize(
        "percentage,level",
        [(None, "ok"), (0.0, "ok"), (74.9, "ok"), (75.0, "warning"), (89.9, "warning"),
         (90.0, "danger"), (math.inf, "danger")],
    )
    def test_levels(self, percentage, level):
        assert spending_level(percentage) == level
