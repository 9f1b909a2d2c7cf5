from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import (
    CATEGORIES_BY_TYPE,
    GOAL_CATEGORIES,
    BudgetScope,
    Currency,
    GoalStatus,
    LogLevel,
    TransactionType,
)


class UserIn(BaseModel):
    id: int = Field(..., ge=0)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birthday: date
    email: Optional[str] = Field(
        default=None,
        max_length=254,
        pattern=r"^\w+([\.-]?\w+)*@\w+([\.-]?\w+)*(\.\w{2,3})+$",
    )
    phone_number: Optional[str] = Field(default=None, pattern=r"^\d{3}-\d{7}$")

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    birthday: date
    email: Optional[str] = None
    phone_number: Optional[str] = None


class UserTotals(BaseModel):
    id: int
    first_name: str
    last_name: str
    total: float
    total_income: float
    total_expenses: float
    balance: float


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    userid: int
    type: TransactionType = TransactionType.expense
    category: str = Field(..., min_length=1, max_length=40)
    sum: float = Field(..., ge=0)
    description: str = Field(..., min_length=1, max_length=500)
    created_at: Optional[datetime] = None

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("created_at")
    @classmethod
    def _naive_local(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Offsets are dropped; stored timestamps are local wall-clock time.
        return value.replace(tzinfo=None) if value else value

    @model_validator(mode="after")
    def _category_matches_type(self) -> "TransactionIn":
        allowed = CATEGORIES_BY_TYPE[self.type]
        if self.category not in allowed:
            raise ValueError(
                f"Invalid {self.type.value} category. Must be one of: {', '.join(allowed)}"
            )
        return self


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    userid: int
    type: TransactionType
    category: str
    sum: float
    description: str
    created_at: datetime


class RequestLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    message: str
    level: LogLevel
    endpoint: str
    method: str
    status_code: Optional[int] = None
    userid: Optional[int] = None
    duration_ms: Optional[float] = None
    timestamp: datetime


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    userid: int
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    type: BudgetScope
    category: Optional[str] = Field(default=None, max_length=40)
    amount: float = Field(..., ge=0)
    currency: Currency = Currency.ILS

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else None

    @model_validator(mode="after")
    def _category_matches_scope(self) -> "BudgetIn":
        if self.type == BudgetScope.total:
            self.category = None
            return self
        allowed = CATEGORIES_BY_TYPE[TransactionType.expense]
        if not self.category:
            raise ValueError('category is required when type is "category"')
        if self.category not in allowed:
            raise ValueError(f"Invalid category. Must be one of: {', '.join(allowed)}")
        return self


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    userid: int
    year: int
    month: int
    type: BudgetScope
    category: Optional[str] = None
    amount: float
    currency: Currency


def _goal_category(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip().lower()
    if value not in GOAL_CATEGORIES:
        raise ValueError(f"Invalid category. Must be one of: {', '.join(GOAL_CATEGORIES)}")
    return value


class GoalIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    userid: int
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: float = Field(..., ge=0)
    current_amount: float = Field(default=0, ge=0)
    deadline: Optional[date] = None
    category: Optional[str] = None
    currency: Currency = Currency.ILS
    status: GoalStatus = GoalStatus.active

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: Optional[str]) -> Optional[str]:
        return _goal_category(value)


class GoalUpdate(BaseModel):
    """Partial update; only the fields sent are applied."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Optional[float] = Field(default=None, ge=0)
    current_amount: Optional[float] = Field(default=None, ge=0)
    deadline: Optional[date] = None
    category: Optional[str] = None
    currency: Optional[Currency] = None
    status: Optional[GoalStatus] = None

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: Optional[str]) -> Optional[str]:
        return _goal_category(value)

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "GoalUpdate":
        for name in ("title", "target_amount", "current_amount", "currency", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    userid: int
    title: str
    description: Optional[str] = None
    target_amount: float
    current_amount: float
    deadline: Optional[date] = None
    category: Optional[str] = None
    currency: Currency
    status: GoalStatus
    created_at: datetime
