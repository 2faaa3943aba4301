"""Tests for the SQLite-backed LedgerStore."""

from __future__ import annotations

from finzn.db import (
    LedgerStore,
    categories_from_frame,
    expenses_from_frame,
    incomes_from_frame,
    limits_from_frame,
)
from finzn.models import Category, Expense, MonthlyIncome, SpendingLimit


def _expense(**overrides) -> Expense:
    values = dict(
        description='Cena',
        amount=120.5,
        category='Comida',
        transaction_date='2024-05-10',
        month='2024-05',
    )
    values.update(overrides)
    return Expense(**values)


def test_expenses_round_trip_through_store(store) -> None:
    expense = _expense(original_amount=120.5, original_id='abc', recurring=True)
    assert store.insert_expenses([expense]) == 1

    loaded = expenses_from_frame(store.fetch_expenses('2024-05'))
    assert len(loaded) == 1
    record = loaded[0]
    assert record.id == expense.id
    assert record.amount == 120.5
    assert record.recurring is True
    assert record.original_id == 'abc'
    assert record.installment == 1


def test_store_is_scoped_to_its_owner(tmp_path) -> None:
    db_path = tmp_path / 'shared.db'
    alice = LedgerStore(db_path=db_path, user_id='alice')
    bob = LedgerStore(db_path=db_path, user_id='bob')
    alice.init_db()

    alice.insert_expenses([_expense()])
    assert bob.fetch_expenses().empty
    assert len(alice.fetch_expenses()) == 1
    # Deleting with the wrong owner is a no-op
    expense_id = alice.fetch_expenses()['id'].iloc[0]
    assert bob.delete_expenses([expense_id]) == 0
    assert alice.delete_expenses([expense_id]) == 1


def test_income_upsert_replaces_row(store) -> None:
    store.upsert_income(MonthlyIncome(month='2024-05', fixed=1000))
    store.upsert_income(MonthlyIncome(month='2024-05', fixed=1500, extra=200))

    incomes = incomes_from_frame(store.fetch_incomes())
    assert incomes == [MonthlyIncome(month='2024-05', fixed=1500.0, extra=200.0)]


def test_spending_limit_upsert_and_delete(store) -> None:
    store.upsert_spending_limit(SpendingLimit('Comida', 100))
    store.upsert_spending_limit(SpendingLimit('Comida', 250, 90))
    assert limits_from_frame(store.fetch_spending_limits()) == [SpendingLimit('Comida', 250.0, 90.0)]

    store.delete_spending_limit('Comida')
    assert store.fetch_spending_limits().empty


def test_update_expenses_changes_only_owned_rows(store) -> None:
    expense = _expense()
    store.insert_expenses([expense])
    expense.amount = 99.0
    expense.description = 'Cena editada'
    assert store.update_expenses([expense]) == 1

    record = expenses_from_frame(store.fetch_expenses())[0]
    assert record.amount == 99.0
    assert record.description == 'Cena editada'


def test_categories_keep_insertion_order(store) -> None:
    for name in ['Zeta', 'Alfa', 'Medio']:
        store.insert_category(Category(name=name))
    names = [c.name for c in categories_from_frame(store.fetch_categories())]
    assert names == ['Zeta', 'Alfa', 'Medio']

    store.delete_category('Alfa')
    names = [c.name for c in categories_from_frame(store.fetch_categories())]
    assert names == ['Zeta', 'Medio']
