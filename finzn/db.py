"""SQLite persistence for the ledger.

Every table carries a ``user_id`` column and a :class:`LedgerStore` only ever
reads and writes rows for the owner it was created for.  Reads return pandas
DataFrames; the ``*_from_frame`` helpers turn them back into records.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union

import pandas as pd

from .config import DB_PATH, USER_ID
from .models import (
    Achievement,
    Category,
    Expense,
    ExtraIncome,
    Goal,
    MonthlyIncome,
    RecurringExpense,
    SpendingLimit,
)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    description TEXT,
    amount REAL,
    category TEXT,
    transaction_date TEXT,
    month TEXT,
    installment INTEGER,
    total_installments INTEGER,
    original_amount REAL,
    original_id TEXT,
    recurring INTEGER,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS incomes (
    user_id TEXT NOT NULL,
    month TEXT NOT NULL,
    fixed REAL DEFAULT 0,
    extra REAL DEFAULT 0,
    PRIMARY KEY (user_id, month)
);

CREATE TABLE IF NOT EXISTS extra_incomes (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    month TEXT,
    description TEXT,
    amount REAL,
    category TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    icon TEXT,
    color TEXT,
    UNIQUE (user_id, name)
);

CREATE TABLE IF NOT EXISTS spending_limits (
    user_id TEXT NOT NULL,
    category TEXT NOT NULL,
    amount REAL,
    warning_percentage REAL,
    PRIMARY KEY (user_id, category)
);

CREATE TABLE IF NOT EXISTS goals (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT,
    target_amount REAL,
    current_amount REAL,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS achievements (
    user_id TEXT NOT NULL,
    id TEXT NOT NULL,
    title TEXT,
    description TEXT,
    unlocked_at TEXT,
    PRIMARY KEY (user_id, id)
);

CREATE TABLE IF NOT EXISTS recurring_expenses (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    description TEXT,
    amount REAL,
    category TEXT,
    start_month TEXT
);

CREATE INDEX IF NOT EXISTS ix_expenses_month ON expenses (user_id, month);
CREATE INDEX IF NOT EXISTS ix_expenses_original ON expenses (user_id, original_id);
CREATE INDEX IF NOT EXISTS ix_extra_incomes_month ON extra_incomes (user_id, month);
"""

_EXPENSE_COLUMNS = (
    "id, user_id, description, amount, category, transaction_date, month, installment, "
    "total_installments, original_amount, original_id, recurring, created_at"
)


def _clean(value: Any) -> Any:
    """Convert pandas NA/NaN into ``None``."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


class LedgerStore:
    """Owner-scoped SQLite repository for every ledger collection."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None, user_id: Optional[str] = None):
        self.db_path = Path(db_path or DB_PATH)
        self.user_id = user_id or USER_ID

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount

    def _executemany(self, sql: str, rows: List[Sequence[Any]]) -> int:
        if not rows:
            return 0
        with self.connect() as conn:
            before = conn.total_changes
            conn.executemany(sql, rows)
            conn.commit()
            return conn.total_changes - before

    def _read(self, sql: str, params: Sequence[Any] = ()) -> pd.DataFrame:
        with self.connect() as conn:
            return pd.read_sql_query(sql, conn, params=list(params))

    # Expenses -------------------------------------------------------------

    def _expense_row(self, expense: Expense) -> tuple:
        return (
            expense.id,
            self.user_id,
            expense.description,
            float(expense.amount),
            expense.category,
            expense.transaction_date,
            expense.month,
            int(expense.installment),
            int(expense.total_installments),
            None if expense.original_amount is None else float(expense.original_amount),
            expense.original_id,
            1 if expense.recurring else 0,
            expense.created_at,
        )

    def insert_expenses(self, expenses: Sequence[Expense]) -> int:
        """Insert all records in one transaction; returns rows written."""
        sql = f"INSERT INTO expenses ({_EXPENSE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
        return self._executemany(sql, [self._expense_row(e) for e in expenses])

    def update_expenses(self, expenses: Sequence[Expense]) -> int:
        sql = (
            "UPDATE expenses SET description = ?, amount = ?, category = ?, original_amount = ?, "
            "total_installments = ?, recurring = ? WHERE id = ? AND user_id = ?"
        )
        rows = [
            (
                e.description,
                float(e.amount),
                e.category,
                None if e.original_amount is None else float(e.original_amount),
                int(e.total_installments),
                1 if e.recurring else 0,
                e.id,
                self.user_id,
            )
            for e in expenses
        ]
        return self._executemany(sql, rows)

    def delete_expenses(self, expense_ids: Sequence[str]) -> int:
        rows = [(expense_id, self.user_id) for expense_id in expense_ids]
        return self._executemany("DELETE FROM expenses WHERE id = ? AND user_id = ?", rows)

    def fetch_expenses(self, month: Optional[str] = None) -> pd.DataFrame:
        sql = f"SELECT {_EXPENSE_COLUMNS} FROM expenses WHERE user_id = ?"
        params: List[Any] = [self.user_id]
        if month:
            sql += " AND month = ?"
            params.append(month)
        sql += " ORDER BY month ASC, created_at ASC, installment ASC"
        return self._read(sql, params)

    # Income ---------------------------------------------------------------

    def upsert_income(self, income: MonthlyIncome) -> int:
        sql = (
            "INSERT INTO incomes (user_id, month, fixed, extra) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(user_id, month) DO UPDATE SET fixed = excluded.fixed, extra = excluded.extra"
        )
        return self._execute(sql, (self.user_id, income.month, float(income.fixed), float(income.extra)))

    def fetch_incomes(self) -> pd.DataFrame:
        return self._read(
            "SELECT month, fixed, extra FROM incomes WHERE user_id = ? ORDER BY month",
            (self.user_id,),
        )

    def insert_extra_income(self, extra: ExtraIncome) -> int:
        sql = (
            "INSERT INTO extra_incomes (id, user_id, month, description, amount, category, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)"
        )
        return self._execute(
            sql,
            (extra.id, self.user_id, extra.month, extra.description, float(extra.amount), extra.category, extra.created_at),
        )

    def fetch_extra_incomes(self, month: Optional[str] = None) -> pd.DataFrame:
        sql = "SELECT id, month, description, amount, category, created_at FROM extra_incomes WHERE user_id = ?"
        params: List[Any] = [self.user_id]
        if month:
            sql += " AND month = ?"
            params.append(month)
        sql += " ORDER BY month ASC, created_at ASC"
        return self._read(sql, params)

    # Categories, limits, goals ---------------------------------------------

    def insert_category(self, category: Category) -> int:
        return self._execute(
            "INSERT INTO categories (id, user_id, name, icon, color) VALUES (?, ?, ?, ?, ?)",
            (category.id, self.user_id, category.name, category.icon, category.color),
        )

    def delete_category(self, name: str) -> int:
        return self._execute("DELETE FROM categories WHERE user_id = ? AND name = ?", (self.user_id, name))

    def fetch_categories(self) -> pd.DataFrame:
        return self._read("SELECT id, name, icon, color FROM categories WHERE user_id = ? ORDER BY rowid", (self.user_id,))

    def upsert_spending_limit(self, limit: SpendingLimit) -> int:
        sql = (
            "INSERT INTO spending_limits (user_id, category, amount, warning_percentage) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(user_id, category) DO UPDATE SET amount = excluded.amount, "
            "warning_percentage = excluded.warning_percentage"
        )
        return self._execute(sql, (self.user_id, limit.category, float(limit.amount), float(limit.warning_percentage)))

    def delete_spending_limit(self, category: str) -> int:
        return self._execute(
            "DELETE FROM spending_limits WHERE user_id = ? AND category = ?", (self.user_id, category)
        )

    def fetch_spending_limits(self) -> pd.DataFrame:
        return self._read(
            "SELECT category, amount, warning_percentage FROM spending_limits WHERE user_id = ? ORDER BY rowid",
            (self.user_id,),
        )

    def insert_goal(self, goal: Goal) -> int:
        return self._execute(
            "INSERT INTO goals (id, user_id, name, target_amount, current_amount, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (goal.id, self.user_id, goal.name, float(goal.target_amount), float(goal.current_amount), goal.created_at),
        )

    def update_goal(self, goal: Goal) -> int:
        return self._execute(
            "UPDATE goals SET name = ?, target_amount = ?, current_amount = ? WHERE id = ? AND user_id = ?",
            (goal.name, float(goal.target_amount), float(goal.current_amount), goal.id, self.user_id),
        )

    def delete_goal(self, goal_id: str) -> int:
        return self._execute("DELETE FROM goals WHERE id = ? AND user_id = ?", (goal_id, self.user_id))

    def fetch_goals(self) -> pd.DataFrame:
        return self._read(
            "SELECT id, name, target_amount, current_amount, created_at FROM goals WHERE user_id = ? ORDER BY created_at",
            (self.user_id,),
        )

    # Achievements and recurring templates ---------------------------------

    def insert_achievements(self, achievements: Sequence[Achievement]) -> int:
        rows = [(self.user_id, a.id, a.title, a.description, a.unlocked_at) for a in achievements]
        return self._executemany(
            "INSERT OR IGNORE INTO achievements (user_id, id, title, description, unlocked_at) VALUES (?, ?, ?, ?, ?)",
            rows,
        )

    def fetch_achievements(self) -> pd.DataFrame:
        return self._read(
            "SELECT id, title, description, unlocked_at FROM achievements WHERE user_id = ? ORDER BY unlocked_at",
            (self.user_id,),
        )

    def insert_recurring_expense(self, template: RecurringExpense) -> int:
        return self._execute(
            "INSERT INTO recurring_expenses (id, user_id, description, amount, category, start_month) VALUES (?, ?, ?, ?, ?, ?)",
            (template.id, self.user_id, template.description, float(template.amount), template.category, template.start_month),
        )

    def fetch_recurring_expenses(self) -> pd.DataFrame:
        return self._read(
            "SELECT id, description, amount, category, start_month FROM recurring_expenses WHERE user_id = ? ORDER BY rowid",
            (self.user_id,),
        )


# ---------------------------------------------------------------------------
# Frame -> record conversion
# ---------------------------------------------------------------------------


def expenses_from_frame(df: pd.DataFrame) -> List[Expense]:
    records: List[Expense] = []
    for row in df.to_dict('records'):
        original_amount = _clean(row.get('original_amount'))
        records.append(Expense(
            id=row['id'],
            description=row['description'],
            amount=float(_clean(row.get('amount')) or 0.0),
            category=row['category'],
            transaction_date=row['transaction_date'],
            month=row['month'],
            installment=int(_clean(row.get('installment')) or 1),
            total_installments=int(_clean(row.get('total_installments')) or 1),
            original_amount=None if original_amount is None else float(original_amount),
            original_id=_clean(row.get('original_id')),
            recurring=bool(_clean(row.get('recurring')) or 0),
            created_at=row['created_at'],
        ))
    return records


def incomes_from_frame(df: pd.DataFrame) -> List[MonthlyIncome]:
    return [
        MonthlyIncome(
            month=row['month'],
            fixed=float(_clean(row.get('fixed')) or 0.0),
            extra=float(_clean(row.get('extra')) or 0.0),
        )
        for row in df.to_dict('records')
    ]


def extra_incomes_from_frame(df: pd.DataFrame) -> List[ExtraIncome]:
    return [
        ExtraIncome(
            id=row['id'],
            month=row['month'],
            description=row['description'],
            amount=float(_clean(row.get('amount')) or 0.0),
            category=row['category'],
            created_at=row['created_at'],
        )
        for row in df.to_dict('records')
    ]


def categories_from_frame(df: pd.DataFrame) -> List[Category]:
    return [Category(id=row['id'], name=row['name'], icon=row['icon'], color=row['color']) for row in df.to_dict('records')]


def limits_from_frame(df: pd.DataFrame) -> List[SpendingLimit]:
    return [
        SpendingLimit(
            category=row['category'],
            amount=float(_clean(row.get('amount')) or 0.0),
            warning_percentage=float(_clean(row.get('warning_percentage')) or 80.0),
        )
        for row in df.to_dict('records')
    ]


def goals_from_frame(df: pd.DataFrame) -> List[Goal]:
    return [
        Goal(
            id=row['id'],
            name=row['name'],
            target_amount=float(_clean(row.get('target_amount')) or 0.0),
            current_amount=float(_clean(row.get('current_amount')) or 0.0),
            created_at=row['created_at'],
        )
        for row in df.to_dict('records')
    ]


def achievements_from_frame(df: pd.DataFrame) -> List[Achievement]:
    return [
        Achievement(id=row['id'], title=row['title'], description=row['description'], unlocked_at=row['unlocked_at'])
        for row in df.to_dict('records')
    ]


def recurring_from_frame(df: pd.DataFrame) -> List[RecurringExpense]:
    return [
        RecurringExpense(
            id=row['id'],
            description=row['description'],
            amount=float(_clean(row.get('amount')) or 0.0),
            category=row['category'],
            start_month=row['start_month'],
        )
        for row in df.to_dict('records')
    ]
