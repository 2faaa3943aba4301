"""Derived monthly views over the ledger.

:class:`LedgerAggregator` only reads.  It never raises on bad data: amounts
that are missing, NaN or non-numeric are coerced to ``0`` with
``pandas.to_numeric(errors='coerce')``, on the assumption that validation
already rejected bad input before it reached the ledger.
"""

from __future__ import annotations

from typing import Any, Dict, List

import numpy as np
import pandas as pd

from .config import DEFAULT_WARNING_PERCENTAGE
from .formatting import format_currency
from .ledger import Ledger
from .models import AlertLevel, BalanceSummary, Goal, LimitAlert
from .parsing import add_months

EXPENSE_FRAME_COLUMNS = [
    'id', 'description', 'category', 'amount', 'installment',
    'total_installments', 'original_amount', 'month',
]


def _coerce_numeric(series: pd.Series, fill: float = 0.0) -> pd.Series:
    numeric = pd.to_numeric(series, errors='coerce')
    return numeric.replace([np.inf, -np.inf], np.nan).fillna(fill).astype(float)


def _to_number(value: Any, fill: float = 0.0) -> float:
    return float(_coerce_numeric(pd.Series([value], dtype=object), fill).iloc[0])


def classify_limit(percentage: float, warning_percentage: float) -> AlertLevel:
    """Map a usage percentage onto an alert level (thresholds are inclusive)."""
    if percentage >= 100:
        return AlertLevel.DANGER
    if percentage >= warning_percentage:
        return AlertLevel.WARNING
    return AlertLevel.SAFE


class LedgerAggregator:
    """Balance, category and limit calculations for one ledger."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    def _expense_frame(self, month: str) -> pd.DataFrame:
        records = self.ledger.get_expenses(month)
        frame = pd.DataFrame(
            [
                {
                    'id': e.id,
                    'description': e.description,
                    'category': e.category,
                    'amount': e.amount,
                    'installment': e.installment,
                    'total_installments': e.total_installments,
                    'original_amount': e.original_amount,
                    'month': e.month,
                }
                for e in records
            ],
            columns=EXPENSE_FRAME_COLUMNS,
        )
        frame['amount'] = _coerce_numeric(frame['amount'].astype(object))
        frame['installment'] = _coerce_numeric(frame['installment'].astype(object), fill=1.0)
        frame['total_installments'] = _coerce_numeric(frame['total_installments'].astype(object), fill=1.0)
        return frame

    def calculate_balance(self, month: str) -> BalanceSummary:
        """Income, expenses and availability for ``month``.

        Income adds three separate sources: the fixed amount and the lump-sum
        extra on the month's income row, plus every itemized extra income.
        """
        expenses = self._expense_frame(month)
        total_expenses = round(float(expenses['amount'].sum()), 2)

        income = self.ledger.get_income(month)
        extras = pd.Series([e.amount for e in self.ledger.get_extra_incomes(month)], dtype=object)
        total_income = round(
            _to_number(income.fixed) + _to_number(income.extra) + float(_coerce_numeric(extras).sum()),
            2,
        )
        installments = int((expenses['total_installments'] > 1).sum())
        return BalanceSummary(
            total_income=total_income,
            total_expenses=total_expenses,
            available=total_income - total_expenses,
            installments=installments,
        )

    def get_expenses_by_category(self, month: str) -> Dict[str, float]:
        """Sum expense amounts per raw category value (no fallback bucket)."""
        frame = self._expense_frame(month)
        if frame.empty:
            return {}
        grouped = frame.groupby('category', sort=False, dropna=False)['amount'].sum()
        return {
            (None if pd.isna(category) else category): round(float(total), 2)
            for category, total in grouped.items()
        }

    def check_spending_limits(self, month: str) -> List[LimitAlert]:
        """One alert per configured limit at or above its warning threshold."""
        spent_by_category = self.get_expenses_by_category(month)
        alerts: List[LimitAlert] = []
        for limit in self.ledger.spending_limits:
            ceiling = _to_number(limit.amount)
            if ceiling <= 0:
                continue
            warning = _to_number(limit.warning_percentage, DEFAULT_WARNING_PERCENTAGE)
            spent = spent_by_category.get(limit.category, 0.0)
            percentage = spent * 100 / ceiling
            level = classify_limit(percentage, warning)
            if level is AlertLevel.SAFE:
                continue
            alerts.append(LimitAlert(
                category=limit.category,
                level=level,
                percentage=round(percentage, 1),
                spent=spent,
                limit=ceiling,
                message=_limit_message(limit.category, level, spent, ceiling, percentage),
            ))
        return alerts

    def spending_limit_table(self, month: str) -> pd.DataFrame:
        """Status of every configured limit, including the ones still safe."""
        columns = ['Category', 'Limit', 'Warning %', 'Spent', 'Remaining', 'Percent Used', 'Status']
        if not self.ledger.spending_limits:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame([
            {'Category': l.category, 'Limit': l.amount, 'Warning %': l.warning_percentage}
            for l in self.ledger.spending_limits
        ])
        df['Limit'] = _coerce_numeric(df['Limit'].astype(object))
        df['Warning %'] = _coerce_numeric(df['Warning %'].astype(object), DEFAULT_WARNING_PERCENTAGE)
        spent = self.get_expenses_by_category(month)
        df['Spent'] = df['Category'].map(lambda c: spent.get(c, 0.0)).astype(float)
        df['Remaining'] = (df['Limit'] - df['Spent']).clip(lower=0.0)

        positive = df['Limit'] > 0
        pct = np.where(positive, df['Spent'] * 100 / df['Limit'].where(positive, 1.0), 0.0)
        df['Percent Used'] = np.round(pct, 1)
        df['Status'] = np.where(
            pct >= 100,
            AlertLevel.DANGER.value,
            np.where(pct >= df['Warning %'], AlertLevel.WARNING.value, AlertLevel.SAFE.value),
        )
        return df[columns]

    def get_active_installments(self, month: str) -> List[Dict[str, Any]]:
        frame = self._expense_frame(month)
        active = frame[frame['total_installments'] > 1]
        rows: List[Dict[str, Any]] = []
        for row in active.to_dict('records'):
            total = int(row['total_installments'])
            current = int(row['installment'])
            remaining = max(total - current, 0)
            original = row['original_amount']
            rows.append({
                'id': row['id'],
                'description': row['description'],
                'category': row['category'],
                'amount': row['amount'],
                'original_amount': row['amount'] * total if original is None or pd.isna(original) else float(original),
                'current_installment': current,
                'total_installments': total,
                'progress': round(current / total * 100),
                'remaining_installments': remaining,
                'remaining_amount': round(row['amount'] * remaining, 2),
            })
        return rows

    def get_monthly_trend(self, month: str, periods: int = 6) -> pd.DataFrame:
        """Expenses, income and net for the ``periods`` months ending at ``month``."""
        rows = []
        for offset in range(periods - 1, -1, -1):
            key = add_months(month, -offset)
            balance = self.calculate_balance(key)
            rows.append({
                'Month': key,
                'Income': balance.total_income,
                'Expenses': balance.total_expenses,
                'Net': balance.available,
            })
        return pd.DataFrame(rows, columns=['Month', 'Income', 'Expenses', 'Net'])

    @staticmethod
    def goal_progress(goal: Goal) -> float:
        """Percent of the target reached, clamped to [0, 100] for display."""
        target = _to_number(goal.target_amount)
        if target <= 0:
            return 0.0
        return float(np.clip(_to_number(goal.current_amount) / target * 100, 0.0, 100.0))

    def generate_report(self, month: str) -> Dict[str, Any]:
        """Monthly report with plain-language recommendations."""
        balance = self.calculate_balance(month)
        by_category = self.get_expenses_by_category(month)
        extra_incomes = self.ledger.get_extra_incomes(month)
        installments = self.get_active_installments(month)

        recommendations: List[str] = []
        if balance.total_expenses > 0:
            for category, amount in by_category.items():
                share = amount / balance.total_expenses * 100
                if share > 40:
                    recommendations.append(f"⚠️ Estás gastando mucho en {category} ({share:.1f}%)")
                elif share < 5:
                    recommendations.append(f"✅ Buen control en {category}")
        if balance.available < 0:
            recommendations.append("🚨 Estás gastando más de lo que ingresas este mes")
        if extra_incomes:
            total_extra = float(_coerce_numeric(pd.Series([e.amount for e in extra_incomes], dtype=object)).sum())
            recommendations.append(f"💰 Ingresos extra del mes: {format_currency(total_extra)}")
        if installments:
            recommendations.append(f"💳 Tienes {len(installments)} cuotas activas este mes")

        return {
            'month': month,
            'balance': balance,
            'by_category': by_category,
            'recommendations': recommendations,
            'expenses': list(self.ledger.get_expenses(month)),
            'extra_incomes': list(extra_incomes),
            'installments': installments,
            'limit_alerts': self.check_spending_limits(month),
            'goals': [
                {'goal': goal, 'progress': self.goal_progress(goal)}
                for goal in self.ledger.goals
            ],
        }


def _limit_message(category: str, level: AlertLevel, spent: float, limit: float, percentage: float) -> str:
    if level is AlertLevel.DANGER:
        return (
            f"¡Has superado el límite de {category}! "
            f"Gastaste {format_currency(spent)} de {format_currency(limit)}"
        )
    return (
        f"¡Cuidado! Estás cerca del límite en {category}. "
        f"Gastaste {format_currency(spent)} de {format_currency(limit)} ({percentage:.1f}%)"
    )
