"""
Core Data Models for Team Budget Tracker

These models define the schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for both storage backends

DESIGN DECISION: Money is Decimal, never float. Percentages are floats
because they are display figures, not amounts.

Budget rule: a budget of None means "no cap". Zero or a positive number
is a real cap, so a zero budget with any spend is over budget.
"""

import datetime as dt
import math
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from teambudget.dates import reference_today


# =============================================================================
# CONSTANTS
# =============================================================================

# Palette offered when creating a team
TEAM_COLORS: tuple[str, ...] = (
    "#3b82f6",  # blue
    "#10b981",  # green
    "#f59e0b",  # amber
    "#ef4444",  # red
    "#8b5cf6",  # violet
    "#ec4899",  # pink
    "#14b8a6",  # teal
    "#f97316",  # orange
)
DEFAULT_TEAM_COLOR = TEAM_COLORS[0]


def coerce_budget(value: Any) -> int:
    """
    Coerce a budget input to a non-negative integer.

    Missing, blank and NaN inputs become 0. Fractions are truncated.
    """
    if value is None:
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0
    return int(number)


# =============================================================================
# STORED ENTITIES
# =============================================================================

class Team(BaseModel):
    """
    An organizational unit with an optional monthly budget.

    The id is stable across renames and budget changes.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Stable team identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    budget: Optional[int] = Field(
        default=None,
        ge=0,
        description="Monthly budget; None means no cap"
    )
    color: str = Field(
        default=DEFAULT_TEAM_COLOR,
        pattern=r"^#[0-9a-fA-F]{6}$",
        description="Display colour"
    )
    created_at: Optional[dt.datetime] = None


class Member(BaseModel):
    """A person belonging to exactly one team at a time."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    team_id: str = Field(
        ...,
        min_length=1,
        description="Owning team; reassigning a member mutates this"
    )
    name: str = Field(..., min_length=1, max_length=100)
    created_at: Optional[dt.datetime] = None


class Expenditure(BaseModel):
    """
    A dated, priced record of spend.

    Readers never recompute amount; the writer guarantees
    amount == unit_price * quantity.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    team_id: str = Field(..., min_length=1)
    member_id: Optional[str] = Field(
        default=None,
        description="None means unassigned spend"
    )
    amount: Decimal
    unit_price: Decimal
    quantity: int
    description: str
    date: dt.date
    created_at: dt.datetime

    # Point-in-time copies of the names, kept after the entity is deleted
    team_name_historical: Optional[str] = None
    member_name_historical: Optional[str] = None

    @field_validator('member_id', mode='before')
    @classmethod
    def empty_member_is_unassigned(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_assigned(self) -> bool:
        return self.member_id is not None


# =============================================================================
# WRITE MODELS
# =============================================================================

class MemberCreate(BaseModel):
    """Input for creating a member."""
    model_config = ConfigDict(str_strip_whitespace=True)

    team_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)


class TeamUpdate(BaseModel):
    """
    Partial team update.

    Only fields explicitly set are written, so budget=None clears the cap.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    budget: Optional[int] = Field(default=None, ge=0)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")

    @model_validator(mode='after')
    def name_cannot_be_cleared(self) -> 'TeamUpdate':
        if "name" in self.model_fields_set and self.name is None:
            raise ValueError("Team name cannot be removed")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class MemberUpdate(BaseModel):
    """Partial member update. Changing team_id moves the member."""
    model_config = ConfigDict(str_strip_whitespace=True)

    team_id: Optional[str] = Field(default=None, min_length=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)

    @model_validator(mode='after')
    def fields_cannot_be_cleared(self) -> 'MemberUpdate':
        for field in ("team_id", "name"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"Member {field} cannot be removed")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ExpenditureCreate(BaseModel):
    """
    Input for recording an expenditure.

    CRITICAL: This is the single place the amount invariant is enforced.
    If amount is omitted it is computed; if supplied it must match.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    team_id: str = Field(..., min_length=1)
    member_id: Optional[str] = None
    unit_price: Decimal = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    amount: Optional[Decimal] = None
    description: str = Field(..., min_length=1, max_length=500)
    date: dt.date = Field(default_factory=reference_today)
    team_name_historical: Optional[str] = None
    member_name_historical: Optional[str] = None

    @field_validator('member_id', mode='before')
    @classmethod
    def empty_member_is_unassigned(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def enforce_amount(self) -> 'ExpenditureCreate':
        expected = self.unit_price * self.quantity
        if self.amount is None:
            self.amount = expected
        elif self.amount != expected:
            raise ValueError(
                f"amount {self.amount} does not equal unit_price x quantity ({expected})"
            )
        return self

    def to_expenditure(self, expenditure_id: str, created_at: dt.datetime) -> Expenditure:
        return Expenditure(
            id=expenditure_id,
            created_at=created_at,
            **self.model_dump(),
        )


class ExpenditureUpdate(BaseModel):
    """Partial expenditure update; may move it to another team or member."""
    model_config = ConfigDict(str_strip_whitespace=True)

    team_id: Optional[str] = Field(default=None, min_length=1)
    member_id: Optional[str] = None
    unit_price: Optional[Decimal] = Field(default=None, gt=0)
    quantity: Optional[int] = Field(default=None, gt=0)
    amount: Optional[Decimal] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    date: Optional[dt.date] = None
    team_name_historical: Optional[str] = None
    member_name_historical: Optional[str] = None

    @field_validator('member_id', mode='before')
    @classmethod
    def empty_member_is_unassigned(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def required_fields_cannot_be_cleared(self) -> 'ExpenditureUpdate':
        for field in ("team_id", "unit_price", "quantity", "amount", "description", "date"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"Expenditure {field} cannot be removed")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# DERIVED MODELS (computed by the aggregator, never stored)
# =============================================================================

class MemberWithSpending(Member):
    """A member plus their figures for one month."""

    budget: Optional[Decimal] = Field(
        default=None,
        description="Even share of the team budget; None when uncapped"
    )
    total_spent: Decimal = Decimal("0")
    remaining: Optional[Decimal] = None
    percentage_used: Optional[float] = None


class TeamWithExpenditures(Team):
    """A team plus its expenditures and figures for one month."""

    expenditures: list[Expenditure] = Field(default_factory=list)
    members: list[MemberWithSpending] = Field(default_factory=list)
    total_budget: int = 0
    total_spent: Decimal = Decimal("0")
    unassigned_spent: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    percentage_used: float = 0.0


class MonthlyBudgetReport(BaseModel):
    """Everything the dashboard shows for one selected month."""

    year: int
    month_index: int = Field(..., ge=0, le=11)
    start: str
    end: str
    teams: list[TeamWithExpenditures] = Field(default_factory=list)
    total_budget: int = 0
    total_spent: Decimal = Decimal("0")
    total_remaining: Decimal = Decimal("0")
    total_members: int = 0


# =============================================================================
# SEED DATA
# =============================================================================

def default_teams() -> list[Team]:
    """The team set seeded into an empty store."""
    return [
        Team(id="1", name="Chen Long", budget=9800, color="#3b82f6"),
        Team(id="2", name="李行舟", budget=8400, color="#10b981"),
        Team(id="3", name="天意", budget=8400, color="#f59e0b"),
        Team(id="4", name="沉浮", budget=5600, color="#ef4444"),
    ]
