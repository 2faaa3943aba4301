"""In-memory ledger collections and the mutation operations that change them.

The :class:`Ledger` is the only writer of ledger state.  Forms, the CSV
importer and the scripts all go through its ``add_*``/``update_*``/
``delete_*`` methods, so record validation, installment fan-out and
achievement unlocking behave the same regardless of where a record came from.

Each mutation writes to the store first and touches the in-memory
collections only once the write is confirmed.  A failed write is logged and
reported through :class:`~finzn.models.MutationResult`; nothing is retried or
rolled back because nothing local was changed.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Callable, Dict, Iterator, List, Optional

from .categorization import default_categories
from .config import DEFAULT_WARNING_PERCENTAGE, EXTRA_INCOME_CATEGORY
from .db import (
    LedgerStore,
    achievements_from_frame,
    categories_from_frame,
    expenses_from_frame,
    extra_incomes_from_frame,
    goals_from_frame,
    incomes_from_frame,
    limits_from_frame,
    recurring_from_frame,
)
from .errors import (
    CategoryInUseError,
    DuplicateCategoryError,
    ExpenseNotFoundError,
    ValidationError,
)
from .models import (
    Achievement,
    Category,
    Expense,
    ExtraIncome,
    Goal,
    MonthlyIncome,
    MutationResult,
    RecurringExpense,
    SpendingLimit,
)
from .parsing import add_months
from .validation import (
    ensure_valid_expense,
    validate_amount,
    validate_category,
    validate_description,
    validate_month_key,
    validate_name,
    validate_warning_percentage,
)

logger = logging.getLogger(__name__)


def split_amount(total: float, parts: int) -> List[float]:
    """Split ``total`` into ``parts`` two-decimal amounts that sum to it.

    The rounding remainder goes to the last part.

    Example:
        >>> split_amount(100, 3)
        [33.33, 33.33, 33.34]
    """
    total = round(float(total), 2)
    parts = max(int(parts), 1)
    base = round(total / parts, 2)
    amounts = [base] * (parts - 1)
    amounts.append(round(total - base * (parts - 1), 2))
    return amounts


def _raise_if_invalid(*results) -> None:
    errors = [r.error for r in results if not r.is_valid]
    if errors:
        raise ValidationError(errors)


class Ledger:
    """Owner-scoped ledger state keyed by ``YYYY-MM`` month."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        today: Optional[date] = None,
        categories: Optional[List[Category]] = None,
    ):
        self.store = store
        self._today = today
        self.expenses: Dict[str, List[Expense]] = {}
        self.incomes: Dict[str, MonthlyIncome] = {}
        self.extra_incomes: Dict[str, List[ExtraIncome]] = {}
        self.categories: List[Category] = default_categories() if categories is None else list(categories)
        self.spending_limits: List[SpendingLimit] = []
        self.goals: List[Goal] = []
        self.achievements: List[Achievement] = []
        self.recurring_expenses: List[RecurringExpense] = []
        self._defer_achievements = False

    @property
    def today(self) -> date:
        return self._today or date.today()

    # Loading ----------------------------------------------------------------

    def load(self) -> None:
        """Replace every in-memory collection with the store's contents.

        A store with no categories yet is seeded with the defaults.
        """
        if self.store is None:
            return
        store = self.store

        self.expenses = {}
        for expense in expenses_from_frame(store.fetch_expenses()):
            self.expenses.setdefault(expense.month, []).append(expense)
        self.incomes = {income.month: income for income in incomes_from_frame(store.fetch_incomes())}
        self.extra_incomes = {}
        for extra in extra_incomes_from_frame(store.fetch_extra_incomes()):
            self.extra_incomes.setdefault(extra.month, []).append(extra)

        categories = categories_from_frame(store.fetch_categories())
        if not categories:
            categories = default_categories()
            for category in categories:
                store.insert_category(category)
        self.categories = categories
        self.spending_limits = limits_from_frame(store.fetch_spending_limits())
        self.goals = goals_from_frame(store.fetch_goals())
        self.achievements = achievements_from_frame(store.fetch_achievements())
        self.recurring_expenses = recurring_from_frame(store.fetch_recurring_expenses())
        logger.info(
            "Loaded ledger for %s: %d months of expenses, %d categories",
            store.user_id, len(self.expenses), len(self.categories),
        )

    def _persist(self, operation: str, write: Callable[[LedgerStore], object]) -> Optional[str]:
        """Run ``write`` against the store; returns an error message on failure."""
        if self.store is None:
            return None
        try:
            write(self.store)
        except sqlite3.Error as exc:
            logger.error("Persisting %s failed: %s", operation, exc)
            return f"No se pudo guardar ({operation}): {exc}"
        return None

    # Queries ----------------------------------------------------------------

    def get_expenses(self, month: str) -> List[Expense]:
        return self.expenses.get(month, [])

    def get_expense(self, expense_id: str, month: str) -> Optional[Expense]:
        return next((e for e in self.get_expenses(month) if e.id == expense_id), None)

    def iter_expenses(self) -> Iterator[Expense]:
        for month in sorted(self.expenses):
            yield from self.expenses[month]

    def get_income(self, month: str) -> MonthlyIncome:
        return self.incomes.get(month) or MonthlyIncome(month=month)

    def get_extra_incomes(self, month: str) -> List[ExtraIncome]:
        return self.extra_incomes.get(month, [])

    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]

    def get_category(self, name: str) -> Optional[Category]:
        return next((c for c in self.categories if c.name == name), None)

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        return next((g for g in self.goals if g.id == goal_id), None)

    def siblings_of(self, expense: Expense) -> List[Expense]:
        """All installment records sharing ``expense``'s original id."""
        if not expense.is_installment or not expense.original_id:
            return [expense]
        return [e for e in self.iter_expenses() if e.original_id == expense.original_id]

    # Expenses ---------------------------------------------------------------

    def add_expense(self, expense: Expense, split: bool = True) -> MutationResult:
        """Validate and persist an expense.

        With ``split`` and more than one installment, ``expense.amount`` is
        the purchase total and N sibling records are created for consecutive
        months.  Without ``split`` the record is stored as given, which is how
        already-split installment rows are imported.
        """
        expense = ensure_valid_expense(expense, self.category_names(), today=self.today)

        if split and expense.is_installment:
            records = self._installment_records(expense)
        else:
            amount = round(float(expense.amount), 2)
            records = [replace(
                expense,
                amount=amount,
                installment=int(expense.installment),
                total_installments=int(expense.total_installments),
                original_amount=amount if expense.original_amount is None else round(float(expense.original_amount), 2),
                original_id=expense.original_id or expense.id,
            )]

        error = self._persist('gasto', lambda store: store.insert_expenses(records))
        if error:
            return MutationResult.failure(error)
        for record in records:
            self.expenses.setdefault(record.month, []).append(record)

        if split and expense.recurring:
            self._register_recurring(records[0])
        self._after_change()
        return MutationResult.success(records)

    def _installment_records(self, expense: Expense) -> List[Expense]:
        total = round(float(expense.amount), 2)
        count = int(expense.total_installments)
        original_id = expense.original_id or expense.id
        return [
            replace(
                expense,
                id=f"{original_id}-{index}",
                amount=amount,
                month=add_months(expense.month, index),
                installment=index + 1,
                total_installments=count,
                original_amount=total,
                original_id=original_id,
                recurring=bool(expense.recurring) and index == 0,
            )
            for index, amount in enumerate(split_amount(total, count))
        ]

    def _register_recurring(self, first: Expense) -> None:
        template = RecurringExpense(
            description=first.description,
            amount=first.original_amount if first.original_amount is not None else first.amount,
            category=first.category,
            start_month=first.month,
            id=first.original_id or first.id,
        )
        error = self._persist('gasto recurrente', lambda store: store.insert_recurring_expense(template))
        if error is None:
            self.recurring_expenses.append(template)

    def update_expense(
        self,
        expense_id: str,
        month: str,
        description: Optional[str] = None,
        amount: Optional[float] = None,
        category: Optional[str] = None,
        recurring: Optional[bool] = None,
    ) -> MutationResult:
        """Edit an expense; installment plans are edited as a whole.

        For installment records ``amount`` is the new purchase total and is
        re-split across the existing siblings.  The installment count itself
        is not editable.
        """
        current = self.get_expense(expense_id, month)
        if current is None:
            raise ExpenseNotFoundError("Gasto no encontrado")

        siblings = sorted(self.siblings_of(current), key=lambda e: int(e.installment))
        if current.is_installment:
            base_total = current.original_amount if current.original_amount is not None else current.amount
        else:
            base_total = current.amount
        new_total = base_total if amount is None else amount
        candidate = replace(
            current,
            description=current.description if description is None else description,
            amount=new_total,
            category=current.category if category is None else category,
            installment=1,
            total_installments=1,
        )
        candidate = ensure_valid_expense(candidate, self.category_names(), today=self.today)
        new_total = round(float(new_total), 2)

        if current.is_installment:
            amounts = split_amount(new_total, len(siblings))
            updated = [
                replace(
                    sibling,
                    description=candidate.description,
                    category=candidate.category,
                    amount=part,
                    original_amount=new_total,
                    recurring=sibling.recurring if recurring is None else (bool(recurring) and int(sibling.installment) == 1),
                )
                for sibling, part in zip(siblings, amounts)
            ]
        else:
            updated = [replace(
                current,
                description=candidate.description,
                category=candidate.category,
                amount=new_total,
                original_amount=new_total,
                recurring=current.recurring if recurring is None else bool(recurring),
            )]

        error = self._persist('gasto', lambda store: store.update_expenses(updated))
        if error:
            return MutationResult.failure(error)
        by_id = {record.id: record for record in updated}
        for month_key, records in self.expenses.items():
            self.expenses[month_key] = [by_id.get(record.id, record) for record in records]
        return MutationResult.success(updated)

    def delete_expense(self, expense_id: str, month: str) -> MutationResult:
        current = self.get_expense(expense_id, month)
        if current is None:
            raise ExpenseNotFoundError("Gasto no encontrado")

        targets = self.siblings_of(current)
        ids = {record.id for record in targets}
        error = self._persist('gasto', lambda store: store.delete_expenses(sorted(ids)))
        if error:
            return MutationResult.failure(error)
        for month_key in list(self.expenses):
            remaining = [record for record in self.expenses[month_key] if record.id not in ids]
            if remaining:
                self.expenses[month_key] = remaining
            else:
                del self.expenses[month_key]
        return MutationResult.success(targets)

    # Income -----------------------------------------------------------------

    def add_fixed_income(self, month: str, amount: float) -> MutationResult:
        """Upsert the fixed income for ``month`` (replaces, never accumulates)."""
        month_result = validate_month_key(month)
        amount_result = validate_amount(amount)
        _raise_if_invalid(month_result, amount_result)

        income = replace(self.get_income(month_result.value), fixed=amount_result.value)
        error = self._persist('ingreso fijo', lambda store: store.upsert_income(income))
        if error:
            return MutationResult.failure(error)
        self.incomes[income.month] = income
        return MutationResult.success([income])

    def set_extra_income_total(self, month: str, amount: float) -> MutationResult:
        """Upsert the lump-sum extra amount kept on the month's income row."""
        month_result = validate_month_key(month)
        amount_result = validate_amount(amount)
        _raise_if_invalid(month_result, amount_result)

        income = replace(self.get_income(month_result.value), extra=amount_result.value)
        error = self._persist('ingreso extra', lambda store: store.upsert_income(income))
        if error:
            return MutationResult.failure(error)
        self.incomes[income.month] = income
        return MutationResult.success([income])

    def add_extra_income(self, month: str, extra: ExtraIncome) -> MutationResult:
        """Record an itemized extra income.

        The month's lump-sum ``extra`` is left alone so the balance never
        counts the same income twice.
        """
        month_result = validate_month_key(month)
        description = validate_description(extra.description)
        _raise_if_invalid(month_result, description, validate_amount(extra.amount))
        record = replace(
            extra,
            description=description.value,
            month=month_result.value,
            amount=round(float(extra.amount), 2),
            category=extra.category or EXTRA_INCOME_CATEGORY,
        )
        error = self._persist('ingreso extra', lambda store: store.insert_extra_income(record))
        if error:
            return MutationResult.failure(error)
        self.extra_incomes.setdefault(record.month, []).append(record)
        self._after_change()
        return MutationResult.success([record])

    # Categories -------------------------------------------------------------

    def add_category(self, category: Category) -> MutationResult:
        _raise_if_invalid(validate_name(category.name))
        name = category.name.strip()
        if self.get_category(name) is not None:
            raise DuplicateCategoryError(f"Ya existe una categoría llamada '{name}'")
        record = replace(category, name=name)
        error = self._persist('categoría', lambda store: store.insert_category(record))
        if error:
            return MutationResult.failure(error)
        self.categories.append(record)
        return MutationResult.success([record])

    def delete_category(self, name: str) -> MutationResult:
        """Delete a category unless any expense still references it by name."""
        category = self.get_category(name)
        if category is None:
            return MutationResult.failure(f"La categoría '{name}' no existe")
        usages = sum(1 for expense in self.iter_expenses() if expense.category == name)
        if usages:
            raise CategoryInUseError(name, usages)
        error = self._persist('categoría', lambda store: store.delete_category(name))
        if error:
            return MutationResult.failure(error)
        self.categories = [c for c in self.categories if c.name != name]
        return MutationResult.success([category])

    # Spending limits ----------------------------------------------------------

    def set_spending_limit(
        self,
        category: str,
        amount: float,
        warning_percentage: float = DEFAULT_WARNING_PERCENTAGE,
    ) -> MutationResult:
        category_result = validate_category(category)
        amount_result = validate_amount(amount)
        warning_result = validate_warning_percentage(warning_percentage)
        _raise_if_invalid(category_result, amount_result, warning_result)
        if amount_result.value <= 0:
            raise ValidationError(["El límite debe ser mayor a cero"])
        if self.get_category(category_result.value) is None:
            raise ValidationError([f"La categoría '{category}' no existe"])

        limit = SpendingLimit(category_result.value, amount_result.value, float(warning_result.value))
        error = self._persist('límite', lambda store: store.upsert_spending_limit(limit))
        if error:
            return MutationResult.failure(error)
        for index, existing in enumerate(self.spending_limits):
            if existing.category == limit.category:
                self.spending_limits[index] = limit
                break
        else:
            self.spending_limits.append(limit)
        return MutationResult.success([limit])

    def delete_spending_limit(self, category: str) -> MutationResult:
        error = self._persist('límite', lambda store: store.delete_spending_limit(category))
        if error:
            return MutationResult.failure(error)
        removed = [limit for limit in self.spending_limits if limit.category == category]
        self.spending_limits = [limit for limit in self.spending_limits if limit.category != category]
        return MutationResult.success(removed)

    # Goals --------------------------------------------------------------------

    def add_goal(self, goal: Goal) -> MutationResult:
        target_result = validate_amount(goal.target_amount)
        current_result = validate_amount(goal.current_amount)
        _raise_if_invalid(validate_name(goal.name), target_result, current_result)
        if target_result.value <= 0:
            raise ValidationError(["El objetivo debe ser mayor a cero"])
        record = replace(goal, name=goal.name.strip(), target_amount=target_result.value, current_amount=current_result.value)
        error = self._persist('objetivo', lambda store: store.insert_goal(record))
        if error:
            return MutationResult.failure(error)
        self.goals.append(record)
        self._after_change()
        return MutationResult.success([record])

    def add_to_goal(self, goal_id: str, amount: float) -> MutationResult:
        """Add savings to a goal; exceeding the target is allowed."""
        goal = self.get_goal(goal_id)
        if goal is None:
            return MutationResult.failure("Objetivo no encontrado")
        amount_result = validate_amount(amount)
        _raise_if_invalid(amount_result)
        updated = replace(goal, current_amount=round(goal.current_amount + amount_result.value, 2))
        error = self._persist('objetivo', lambda store: store.update_goal(updated))
        if error:
            return MutationResult.failure(error)
        self.goals = [updated if g.id == goal_id else g for g in self.goals]
        self._after_change()
        return MutationResult.success([updated])

    def delete_goal(self, goal_id: str) -> MutationResult:
        error = self._persist('objetivo', lambda store: store.delete_goal(goal_id))
        if error:
            return MutationResult.failure(error)
        removed = [g for g in self.goals if g.id == goal_id]
        self.goals = [g for g in self.goals if g.id != goal_id]
        return MutationResult.success(removed)

    # Achievements -------------------------------------------------------------

    @contextmanager
    def deferred_achievements(self) -> Iterator[None]:
        """Check achievements once on exit instead of after every mutation.

        Bulk writers such as the CSV importer wrap their loop in this.
        """
        if self._defer_achievements:
            yield
            return
        self._defer_achievements = True
        try:
            yield
        finally:
            self._defer_achievements = False
        self.check_achievements()

    def _after_change(self) -> None:
        if not self._defer_achievements:
            self.check_achievements()

    def check_achievements(self) -> List[Achievement]:
        """Unlock achievements earned by the current state; returns new ones."""
        unlocked = {a.id for a in self.achievements}
        all_expenses = list(self.iter_expenses())
        candidates = [
            (
                bool(all_expenses),
                Achievement('first-expense', '🎉 Primer Gasto Registrado', 'Has registrado tu primer gasto'),
            ),
            (
                any(g.current_amount >= g.target_amount for g in self.goals),
                Achievement('first-goal', '🎯 Primer Objetivo Cumplido', 'Has completado tu primer objetivo de ahorro'),
            ),
            (
                sum(1 for records in self.expenses.values() if records) >= 3,
                Achievement('consistent-tracking', '📊 Seguimiento Consistente', 'Has registrado gastos por 3 meses'),
            ),
            (
                any(self.extra_incomes.values()),
                Achievement('first-extra-income', '💰 Primer Ingreso Extra', 'Has registrado tu primer ingreso extra'),
            ),
            (
                any(e.is_installment for e in all_expenses),
                Achievement('first-installment', '💳 Primera Cuota', 'Has registrado tu primer gasto en cuotas'),
            ),
        ]
        new = [achievement for earned, achievement in candidates if earned and achievement.id not in unlocked]
        if not new:
            return []
        error = self._persist('logros', lambda store: store.insert_achievements(new))
        if error:
            return []
        self.achievements.extend(new)
        for achievement in new:
            logger.info("Achievement unlocked: %s", achievement.id)
        return new
