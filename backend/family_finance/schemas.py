from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BillStatus(str, Enum):
    upcoming = "upcoming"
    due = "due"
    overdue = "overdue"
    paid = "paid"


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorResponse(BaseModel):
    error: str
    code: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class Record(BaseModel):
    """Base of every stored entity; serialized as JSON bytes under its id."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True, allow_inf_nan=False)

    tracks_timestamps: ClassVar[bool] = False
    default_currency: ClassVar[Optional[str]] = None

    id: str = ""

    @model_validator(mode="before")
    @classmethod
    def null_means_default(cls, data: Any) -> Any:
        # An explicit null reads the same as an omitted field.
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class Expense(Record):
    tracks_timestamps: ClassVar[bool] = True
    default_currency: ClassVar[Optional[str]] = "INR"

    amount: float = 0
    currency: str = ""
    description: str = ""
    category: str = ""
    categoryColor: Optional[str] = None
    merchant: str = ""
    date: str = ""
    user: str = ""
    isShared: bool = False
    hasAttachments: bool = False
    commentCount: int = 0
    notes: Optional[str] = None
    attachments: Optional[list[str]] = None
    budgetIds: Optional[list[str]] = None
    createdAt: str = ""
    updatedAt: str = ""


class Budget(Record):
    name: str = ""
    category: str = ""
    month: str = Field(default="", description='Budget month, formatted "YYYY-MM"')
    limit: float = 0
    spent: float = 0
    color: str = ""
    isRecurring: bool = False


class Goal(Record):
    name: str = ""
    target: float = 0
    current: float = 0
    deadline: str = ""
    color: str = ""


class Investment(Record):
    name: str = ""
    type: str = ""
    units: Optional[float] = None
    purchasePrice: Optional[float] = None
    currentValue: Optional[float] = None
    value: float = 0
    investedValue: float = 0
    returns: float = 0
    returnsPercent: float = 0
    currency: Optional[str] = None


class BillReminder(Record):
    name: str = ""
    amount: float = 0
    dueDate: str = ""
    status: BillStatus = BillStatus.upcoming
    category: str = ""


class Income(Record):
    tracks_timestamps: ClassVar[bool] = True
    default_currency: ClassVar[Optional[str]] = "INR"

    amount: float = 0
    currency: str = ""
    source: str = ""
    description: str = ""
    date: str = ""
    isRecurring: bool = False
    user: str = ""
    createdAt: str = ""
    updatedAt: str = ""


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str


class UploadResponse(BaseModel):
    url: str
    filename: str


class StatsResponse(BaseModel):
    totalSpent: float
    monthlyBudget: float
    transactionCount: int
    savingsRate: float


class DashboardStats(StatsResponse):
    totalIncome: float
    netBalance: float


class CategorySlice(BaseModel):
    name: str
    value: float
    color: str


class DashboardResponse(BaseModel):
    stats: DashboardStats
    expenses: list[Expense]
    recentTransactions: list[Expense]
    budgets: list[Budget]
    goals: list[Goal]
    bills: list[BillReminder]
    incomes: list[Income]
    categoryData: list[CategorySlice]
