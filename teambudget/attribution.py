"""
Historical Attribution Resolver

Resolves display names for team and member references that may no
longer exist. A live entity always wins; otherwise the name frozen onto
the expenditure at write time is used; otherwise a fixed sentinel.

Every surface that shows an expenditure goes through this resolver.
"""

from typing import Any, Iterable, Optional

from teambudget.models.budget import Expenditure, Member, Team


UNKNOWN_TEAM = "Unknown Team (Deleted)"
UNKNOWN_MEMBER = "Unknown Member (Deleted)"
UNASSIGNED = "Unassigned"


def snapshot_names(team: Optional[Team], member: Optional[Member]) -> dict[str, Any]:
    """Historical name fields for an expenditure written now."""
    names: dict[str, Any] = {}
    if team is not None:
        names["team_name_historical"] = team.name
    if member is not None:
        names["member_name_historical"] = member.name
    return names


class AttributionResolver:
    """
    Name lookup over the currently loaded teams and members.

    Build a new resolver after every refetch; it holds no storage handle.
    """

    def __init__(self, teams: Iterable[Team], members: Iterable[Member]):
        self._teams = {team.id: team for team in teams}
        self._members = {member.id: member for member in members}

    def resolve_team_name(
        self,
        team_id: Optional[str],
        expenditure: Optional[Expenditure] = None,
    ) -> str:
        team = self._teams.get(team_id) if team_id else None
        if team is not None:
            return team.name
        if expenditure is not None and expenditure.team_name_historical:
            return expenditure.team_name_historical
        return UNKNOWN_TEAM

    def resolve_member_name(
        self,
        member_id: Optional[str],
        expenditure: Optional[Expenditure] = None,
    ) -> str:
        historical = expenditure.member_name_historical if expenditure is not None else None

        # Deleted members leave a cleared reference behind
        if not member_id:
            return historical or UNASSIGNED

        member = self._members.get(member_id)
        if member is not None:
            return member.name
        return historical or UNKNOWN_MEMBER

    def describe(self, expenditure: Expenditure) -> dict[str, Any]:
        """Display row for an expenditure, with resolved names."""
        return {
            "id": expenditure.id,
            "team_id": expenditure.team_id,
            "member_id": expenditure.member_id,
            "date": expenditure.date.isoformat(),
            "team": self.resolve_team_name(expenditure.team_id, expenditure),
            "member": self.resolve_member_name(expenditure.member_id, expenditure),
            "description": expenditure.description,
            "unit_price": expenditure.unit_price,
            "quantity": expenditure.quantity,
            "amount": expenditure.amount,
        }
