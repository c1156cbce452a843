"""
Budget Aggregator

DESIGN DECISION: Aggregation is PURE and SYNCHRONOUS.
It runs over teams, members and expenditures that were already fetched
for one month, and never touches storage. The dashboard, the admin
console and the single-member view all derive their figures here, so
they can never disagree.

Budget rule: None means no cap. A zero budget is a real cap, so any
spend against it is over budget (infinite percentage).
"""

import math
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional

from teambudget.dates import resolve_month_window, shift_month
from teambudget.models.budget import (
    Expenditure,
    Member,
    MemberWithSpending,
    MonthlyBudgetReport,
    Team,
    TeamWithExpenditures,
)


ZERO = Decimal("0")

# Thresholds for the progress colour shown next to a percentage
DANGER_THRESHOLD = 90.0
WARNING_THRESHOLD = 75.0


def individual_budget(team_budget: Optional[int], member_count: int) -> Optional[Decimal]:
    """
    Even share of a team budget.

    None when the team is uncapped or has no members.

    Example:
        >>> individual_budget(9000, 3)
        Decimal('3000')
    """
    if team_budget is None or member_count <= 0:
        return None
    return Decimal(team_budget) / member_count


def member_percentage(spent: Decimal, budget: Optional[Decimal]) -> Optional[float]:
    if budget is None:
        return None
    if budget == 0:
        return math.inf if spent > 0 else 0.0
    return float(spent / budget * 100)


def team_percentage(spent: Decimal, total_budget: int) -> float:
    if total_budget <= 0:
        return 0.0
    return float(spent / Decimal(total_budget) * 100)


def spending_level(percentage: Optional[float]) -> str:
    """Classify a percentage as "danger", "warning" or "ok"."""
    if percentage is None:
        return "ok"
    if percentage >= DANGER_THRESHOLD:
        return "danger"
    if percentage >= WARNING_THRESHOLD:
        return "warning"
    return "ok"


def _total(expenditures: Iterable[Expenditure]) -> Decimal:
    return sum((exp.amount for exp in expenditures), ZERO)


def member_spending(
    member: Member,
    team: Optional[Team],
    member_count: int,
    expenditures: Iterable[Expenditure],
) -> MemberWithSpending:
    """
    One member's figures.

    Only expenditures booked against the member's current team count,
    so spend made before a team move stays with the old team.
    """
    budget = individual_budget(team.budget if team else None, member_count)
    spent = _total(
        exp for exp in expenditures
        if exp.member_id == member.id and exp.team_id == member.team_id
    )
    return MemberWithSpending(
        **member.model_dump(),
        budget=budget,
        total_spent=spent,
        remaining=None if budget is None else budget - spent,
        percentage_used=member_percentage(spent, budget),
    )


def aggregate_team(
    team: Team,
    members: Iterable[Member],
    expenditures: Iterable[Expenditure],
) -> TeamWithExpenditures:
    """
    Figures for one team.

    members and expenditures may hold other teams' records; they are
    filtered by team id here. unassigned_spent is the part of the team
    total not attributed to a current member of the team.
    """
    team_members = [m for m in members if m.team_id == team.id]
    team_expenditures = [exp for exp in expenditures if exp.team_id == team.id]

    member_figures = [
        member_spending(member, team, len(team_members), team_expenditures)
        for member in team_members
    ]

    total_spent = _total(team_expenditures)
    assigned_spent = sum((m.total_spent for m in member_figures), ZERO)
    total_budget = team.budget or 0

    return TeamWithExpenditures(
        **team.model_dump(),
        expenditures=team_expenditures,
        members=member_figures,
        total_budget=total_budget,
        total_spent=total_spent,
        unassigned_spent=total_spent - assigned_spent,
        remaining=Decimal(total_budget) - total_spent,
        percentage_used=team_percentage(total_spent, total_budget),
    )


def aggregate_month(
    teams: list[Team],
    members: list[Member],
    expenditures: list[Expenditure],
    year: int,
    month_index: int,
) -> MonthlyBudgetReport:
    """
    Build the full dashboard report for one month.

    Expenditures outside the month window are ignored, so callers may
    pass a wider list.
    """
    window = resolve_month_window(year, month_index)
    year, month_index = shift_month(year, month_index, 0)

    in_window = [exp for exp in expenditures if window.contains(exp.date.isoformat())]

    by_team: dict[str, list[Expenditure]] = defaultdict(list)
    for exp in in_window:
        by_team[exp.team_id].append(exp)
    members_by_team: dict[str, list[Member]] = defaultdict(list)
    for member in members:
        members_by_team[member.team_id].append(member)

    team_reports = [
        aggregate_team(team, members_by_team[team.id], by_team[team.id])
        for team in teams
    ]

    total_budget = sum(t.total_budget for t in team_reports)
    total_spent = sum((t.total_spent for t in team_reports), ZERO)

    return MonthlyBudgetReport(
        year=year,
        month_index=month_index,
        start=window.start,
        end=window.end,
        teams=team_reports,
        total_budget=total_budget,
        total_spent=total_spent,
        total_remaining=Decimal(total_budget) - total_spent,
        total_members=sum(len(t.members) for t in team_reports),
    )
