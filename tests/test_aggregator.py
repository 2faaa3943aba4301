from __future__ import annotations

import pytest

from finzn.aggregator import LedgerAggregator, classify_limit
from finzn.models import AlertLevel, Expense, ExtraIncome, Goal, SpendingLimit

MONTH = '2024-05'


def _expense(amount, category='Comida', **overrides) -> Expense:
    values = dict(
        description='Gasto',
        amount=amount,
        category=category,
        transaction_date='2024-05-10',
        month=MONTH,
    )
    values.update(overrides)
    return Expense(**values)


def _seed(ledger, *expenses) -> None:
    """Place records directly in memory, bypassing validation."""
    for expense in expenses:
        ledger.expenses.setdefault(expense.month, []).append(expense)


def test_balance_adds_all_three_income_sources(ledger) -> None:
    ledger.add_fixed_income(MONTH, 1000)
    ledger.set_extra_income_total(MONTH, 150)
    ledger.add_extra_income(MONTH, ExtraIncome('Freelance', 200, 'other', MONTH))
    ledger.add_extra_income(MONTH, ExtraIncome('Venta', 50.5, 'other', MONTH))
    ledger.add_expense(_expense(300))
    ledger.add_expense(_expense(99.99, 'Ocio'))

    balance = LedgerAggregator(ledger).calculate_balance(MONTH)

    assert balance.total_income == 1400.5
    assert balance.total_expenses == 399.99
    assert balance.available == pytest.approx(balance.total_income - balance.total_expenses)
    assert balance.installments == 0


def test_balance_of_empty_month(ledger) -> None:
    balance = LedgerAggregator(ledger).calculate_balance('1999-01')
    assert balance.as_dict() == {'totalIncome': 0.0, 'totalExpenses': 0.0, 'available': 0.0, 'installments': 0}


def test_bad_amounts_are_coerced_to_zero(ledger) -> None:
    _seed(ledger, _expense(None), _expense('abc'), _expense(float('nan')), _expense('25.5'), _expense(10))

    aggregator = LedgerAggregator(ledger)

    assert aggregator.calculate_balance(MONTH).total_expenses == 35.5
    assert aggregator.get_expenses_by_category(MONTH) == {'Comida': 35.5}


def test_installment_count_in_balance(ledger) -> None:
    ledger.add_expense(_expense(300, total_installments=3))
    ledger.add_expense(_expense(20))

    balance = LedgerAggregator(ledger).calculate_balance(MONTH)

    assert balance.total_expenses == 120.0
    assert balance.installments == 1


def test_categories_are_summed_verbatim(ledger) -> None:
    _seed(
        ledger,
        _expense(10, 'Comida'),
        _expense(5, 'Comida'),
        _expense(7, 'Categoría Borrada'),
        _expense(3, 'Ocio'),
    )

    totals = LedgerAggregator(ledger).get_expenses_by_category(MONTH)

    assert totals == {'Comida': 15.0, 'Categoría Borrada': 7.0, 'Ocio': 3.0}
    assert 'Otros' not in totals


@pytest.mark.parametrize(
    "spent, limit, warning, expected",
    [
        (79.9, 100, 80, None),
        (80, 100, 80, AlertLevel.WARNING),
        (99.99, 100, 80, AlertLevel.WARNING),
        (100, 100, 80, AlertLevel.DANGER),
        (250, 100, 80, AlertLevel.DANGER),
        (45, 50, 95, None),
    ],
)
def test_spending_limit_boundaries(ledger, spent, limit, warning, expected) -> None:
    ledger.add_expense(_expense(spent))
    ledger.set_spending_limit('Comida', limit, warning)

    alerts = LedgerAggregator(ledger).check_spending_limits(MONTH)

    if expected is None:
        assert alerts == []
    else:
        assert len(alerts) == 1
        assert alerts[0].level is expected
        assert alerts[0].category == 'Comida'
        assert alerts[0].percentage == round(spent * 100 / limit, 1)


def test_limit_messages(ledger) -> None:
    ledger.add_expense(_expense(1500))
    ledger.add_expense(_expense(850, 'Ocio'))
    ledger.set_spending_limit('Comida', 1000)
    ledger.set_spending_limit('Ocio', 1000)

    alerts = {a.category: a for a in LedgerAggregator(ledger).check_spending_limits(MONTH)}

    assert alerts['Comida'].message == "¡Has superado el límite de Comida! Gastaste $1.500 de $1.000"
    assert alerts['Ocio'].message.startswith("¡Cuidado! Estás cerca del límite en Ocio.")
    assert alerts['Ocio'].message.endswith("(85.0%)")


def test_non_positive_limits_are_ignored(ledger) -> None:
    ledger.add_expense(_expense(10))
    ledger.spending_limits.append(SpendingLimit('Comida', 0))

    assert LedgerAggregator(ledger).check_spending_limits(MONTH) == []


def test_classify_limit() -> None:
    assert classify_limit(0, 80) is AlertLevel.SAFE
    assert classify_limit(80, 80) is AlertLevel.WARNING
    assert classify_limit(100, 80) is AlertLevel.DANGER


def test_spending_limit_table(ledger) -> None:
    ledger.add_expense(_expense(90))
    ledger.set_spending_limit('Comida', 100)
    ledger.set_spending_limit('Ocio', 200)

    table = LedgerAggregator(ledger).spending_limit_table(MONTH)

    assert list(table['Category']) == ['Comida', 'Ocio']
    assert list(table['Spent']) == [90.0, 0.0]
    assert list(table['Remaining']) == [10.0, 200.0]
    assert list(table['Percent Used']) == [90.0, 0.0]
    assert list(table['Status']) == ['warning', 'safe']


def test_active_installments_and_trend(ledger) -> None:
    ledger.add_fixed_income('2024-06', 500)
    ledger.add_expense(_expense(300, total_installments=3))

    aggregator = LedgerAggregator(ledger)
    active = aggregator.get_active_installments('2024-06')
    assert len(active) == 1
    assert active[0]['current_installment'] == 2
    assert active[0]['remaining_installments'] == 1
    assert active[0]['remaining_amount'] == 100.0
    assert active[0]['original_amount'] == 300.0

    trend = aggregator.get_monthly_trend('2024-07', periods=3)
    assert list(trend['Month']) == ['2024-05', '2024-06', '2024-07']
    assert list(trend['Expenses']) == [100.0, 100.0, 100.0]
    assert list(trend['Net']) == [-100.0, 400.0, -100.0]


def test_goal_progress_is_clamped() -> None:
    assert LedgerAggregator.goal_progress(Goal('A', 1000, 250)) == 25.0
    assert LedgerAggregator.goal_progress(Goal('B', 1000, 5000)) == 100.0
    assert LedgerAggregator.goal_progress(Goal('C', 0, 10)) == 0.0


def test_generate_report_recommendations(ledger) -> None:
    ledger.add_fixed_income(MONTH, 100)
    ledger.add_expense(_expense(500, 'Comida'))
    ledger.add_expense(_expense(10, 'Ocio'))
    ledger.add_extra_income(MONTH, ExtraIncome('Bono', 1000, 'other', MONTH))

    report = LedgerAggregator(ledger).generate_report(MONTH)

    recommendations = report['recommendations']
    assert any('mucho en Comida' in r for r in recommendations)
    assert any('Buen control en Ocio' in r for r in recommendations)
    assert any('Ingresos extra del mes: $1.000' in r for r in recommendations)
    assert not any('más de lo que ingresas' in r for r in recommendations)
    assert report['by_category'] == {'Comida': 500.0, 'Ocio': 10.0}
