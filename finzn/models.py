"""Record types shared by the ledger, the aggregator and the CSV engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def new_id() -> str:
    return uuid.uuid4().hex


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Expense:
    """One expense row; installment plans are stored as N sibling rows."""
    description: str
    amount: float
    category: str
    transaction_date: str  # YYYY-MM-DD
    month: str  # YYYY-MM partition key
    installment: int = 1
    total_installments: int = 1
    original_amount: Optional[float] = None
    recurring: bool = False
    id: str = field(default_factory=new_id)
    original_id: Optional[str] = None
    created_at: str = field(default_factory=utc_timestamp)

    @property
    def is_installment(self) -> bool:
        try:
            return int(self.total_installments) > 1
        except (TypeError, ValueError):
            return False


@dataclass
class MonthlyIncome:
    """Income row for a month: upserted fixed salary plus a lump-sum extra."""
    month: str
    fixed: float = 0.0
    extra: float = 0.0


@dataclass
class ExtraIncome:
    description: str
    amount: float
    category: str
    month: str
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_timestamp)


@dataclass
class Category:
    name: str
    icon: str = "📦"
    color: str = "#9ca3af"
    id: str = field(default_factory=new_id)


@dataclass
class SpendingLimit:
    category: str
    amount: float
    warning_percentage: float = 80.0


@dataclass
class Goal:
    name: str
    target_amount: float
    current_amount: float = 0.0
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_timestamp)


@dataclass
class Achievement:
    id: str
    title: str
    description: str
    unlocked_at: str = field(default_factory=utc_timestamp)


@dataclass
class RecurringExpense:
    description: str
    amount: float
    category: str
    start_month: str
    id: str = field(default_factory=new_id)


# ---------------------------------------------------------------------------
# Derived views and operation results
# ---------------------------------------------------------------------------


class AlertLevel(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


@dataclass
class BalanceSummary:
    total_income: float
    total_expenses: float
    available: float
    installments: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            'totalIncome': self.total_income,
            'totalExpenses': self.total_expenses,
            'available': self.available,
            'installments': self.installments,
        }


@dataclass
class LimitAlert:
    category: str
    level: AlertLevel
    percentage: float  # rounded to one decimal
    spent: float
    limit: float
    message: str


@dataclass
class MutationResult:
    """Outcome of a persisted mutation.

    ``records`` carries whatever the mutation wrote, so callers can reconcile
    views once ``ok`` is confirmed.
    """
    ok: bool
    error: Optional[str] = None
    records: List[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, records: Optional[List[Any]] = None) -> "MutationResult":
        return cls(ok=True, records=list(records or []))

    @classmethod
    def failure(cls, error: str) -> "MutationResult":
        return cls(ok=False, error=error)


@dataclass
class ImportResult:
    imported: int = 0
    errors: int = 0
    skipped: int = 0
    detected_format: str = "unknown"

    def as_dict(self) -> Dict[str, int]:
        return {'imported': self.imported, 'errors': self.errors}
