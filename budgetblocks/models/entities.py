"""
Core Data Models for Budget Blocks

These models define the schemas for every entity the store owns.
They are designed to:
1. Enforce type safety at runtime
2. Serialize to the persisted camelCase layout
3. Accept either camelCase or snake_case field names on input
4. Be deep-copied freely (no shared references leave the store)

DESIGN DECISION: Money is Decimal everywhere. Balances are moved by the
ledger engine with exact arithmetic so execute followed by undo restores
the previous balance bit for bit.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)
from pydantic.alias_generators import to_camel

from budgetblocks.dates import utc_now


def new_id() -> str:
    """Generate a new entity id."""
    return str(uuid4())


class EntityModel(BaseModel):
    """Shared configuration: camelCase aliases, whitespace stripping."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class BlockType(str, Enum):
    """
    Declared type of a block.

    The type decides which legs of a row move money when it is executed.
    """
    INCOME = "Income"
    FIXED_BILL = "Fixed Bill"
    FLOW = "Flow"


class FlowMode(str, Enum):
    """How a Flow row's value is expressed."""
    FIXED = "Fixed"
    PERCENT = "%"


class AttributionRule(str, Enum):
    """Which month a band is displayed under."""
    END_MONTH = "end-month"
    START_MONTH = "start-month"
    SHIFT_PLUS_1 = "shift-plus-1"


class RecurrenceFrequency(str, Enum):
    """Recurrence frequencies for library templates."""
    WEEKLY = "Weekly"
    BIWEEKLY = "Biweekly"
    SEMI_MONTHLY = "Semi-Monthly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"


class ScheduleFrequency(str, Enum):
    """Pay schedule frequencies."""
    WEEKLY = "Weekly"
    BI_WEEKLY = "Bi-Weekly"
    SEMI_MONTHLY = "Semi-Monthly"
    MONTHLY = "Monthly"


DEFAULT_BASE_TYPES = ["Checking", "Savings", "Credit", "Loan", "Vault", "Goal"]
DEFAULT_FLOW_TYPES = ["Transfer", "Payment", "Expense", "Reimbursement"]

CATEGORY_COLORS = ["#3b82f6", "#8b5cf6", "#ec4899", "#f97316", "#10b981", "#06b6d4"]

DayOfMonth = Union[Annotated[int, Field(ge=1, le=31)], Literal["Last"]]


# =============================================================================
# BASES
# =============================================================================

class Base(EntityModel):
    """
    A named account-like balance holder.

    CRITICAL: `balance` is only ever moved by the ledger engine.
    Form edits go through update_base, which refuses balance changes.
    """

    id: str = Field(default_factory=new_id)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    type: str = Field(
        ...,
        min_length=1,
        description="Checking, Savings, Credit, Loan, Vault, Goal or a custom type"
    )
    institution: Optional[str] = None
    identifier: Optional[str] = Field(
        default=None,
        description="Last digits or other account identifier"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance"
    )
    currency: str = Field(default="USD", min_length=1, max_length=10)
    tags: list[str] = Field(default_factory=list)
    tag_color: Optional[str] = None
    sort_order: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# BLOCKS AND ROWS
# =============================================================================

class Row(EntityModel):
    """
    One planned or actual money movement inside a block.

    The balance effect depends on the owning block's type and on which of
    from_base_id / to_base_id are set.
    """

    id: str = Field(default_factory=new_id)
    date: date
    owner: str = ""
    source: Optional[str] = Field(
        default=None,
        description="Vendor for fixed bills, payer for income, description for flows"
    )
    from_base_id: Optional[str] = None
    to_base_id: Optional[str] = None
    amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Amount moved when executed"
    )
    flow_mode: Optional[FlowMode] = None
    flow_value: Optional[Decimal] = None
    type: Optional[str] = Field(
        default=None,
        description="Flow row type (Transfer, Payment, Expense, Reimbursement, ...)"
    )
    category: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    executed: bool = False


class RecurrenceRule(EntityModel):
    """Recurrence attached to a library template."""

    frequency: RecurrenceFrequency
    start_date: date
    end_date: Optional[date] = None
    snap_to_bands: bool = False
    anchor_date: Optional[date] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurrenceRule':
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("Recurrence end date cannot be before start date")
        return self


class Block(EntityModel):
    """
    A titled group of rows of one declared type.

    `band_id` is derived from `date` by the band assigner; library
    templates never carry one.
    """

    id: str = Field(default_factory=new_id)
    type: BlockType
    title: str = Field(..., min_length=1, max_length=200)
    date: date
    tags: list[str] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)
    band_id: Optional[str] = None
    recurrence: Optional[RecurrenceRule] = None
    is_template: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_row(self, row_id: str) -> Optional[Row]:
        for row in self.rows:
            if row.id == row_id:
                return row
        return None

    @property
    def total(self) -> Decimal:
        return sum((row.amount for row in self.rows), Decimal("0"))


# =============================================================================
# BANDS AND SCHEDULES
# =============================================================================

class PayPeriodBand(EntityModel):
    """
    An inclusive calendar interval used to file blocks by date.

    Bands used for assignment should not overlap; the assigner picks the
    first match in collection order.
    """

    id: str = Field(default_factory=new_id)
    title: str = Field(..., min_length=1, max_length=200)
    start_date: date
    end_date: date
    order: int = 0
    archived: bool = False
    attribution_rule: AttributionRule = AttributionRule.END_MONTH
    display_month: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-\d{2}$",
        description="Month the band is displayed under (YYYY-MM)"
    )

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date


class PaySchedule(EntityModel):
    """A recurring payday rule used to generate bands."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    frequency: ScheduleFrequency
    anchor_day: Optional[DayOfMonth] = Field(
        default=None,
        description="Monthly payday (1-31 or 'Last')"
    )
    semi_monthly_day1: Optional[DayOfMonth] = None
    semi_monthly_day2: Optional[DayOfMonth] = None
    anchor_date: Optional[date] = Field(
        default=None,
        description="A known payday for weekly and bi-weekly schedules"
    )
    created_at: datetime = Field(default_factory=utc_now)


class FixedBill(EntityModel):
    """A recurring bill kept in the bills library."""

    id: str = Field(default_factory=new_id)
    owner: str = ""
    vendor: str = Field(..., min_length=1, max_length=200)
    from_base_id: Optional[str] = None
    default_amount: Decimal = Field(default=Decimal("0"), ge=0)
    due_day: DayOfMonth = 1
    category: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    autopay: bool = False
    active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# OWNERS, CATEGORIES, PREFERENCES
# =============================================================================

class Owner(EntityModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    order: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class Category(EntityModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    color: str = CATEGORY_COLORS[0]
    order: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class TemplatePreferences(EntityModel):
    """Whether to stop offering templates when creating each block type."""

    dont_offer_for_income: bool = False
    dont_offer_for_fixed: bool = False
    dont_offer_for_flow: bool = False
