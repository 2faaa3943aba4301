"""Tests for CSV export, format detection and import."""

from __future__ import annotations

import pytest

from finzn.aggregator import LedgerAggregator
from finzn.csv_interchange import (
    COMPLETE_HEADERS,
    EXPENSE_HEADERS,
    INCOME_HEADERS,
    CSVFormat,
    CSVInterchange,
    ExportKind,
    RowType,
    detect_csv_format,
    detect_row_type,
    export_data_to_csv,
    normalize_header,
    parse_csv_line,
)
from finzn.errors import CSVImportError
from finzn.ledger import Ledger
from finzn.models import Category, Expense, ExtraIncome

MONTH = '2024-05'


def _expense(**overrides) -> Expense:
    values = dict(
        description='Cena con amigos',
        amount=1200,
        category='Comida',
        transaction_date='2024-05-10',
        month=MONTH,
    )
    values.update(overrides)
    return Expense(**values)


def _line(*fields) -> str:
    return ",".join(f'"{field}"' for field in fields)


# ---------------------------------------------------------------------------
# Row parser and classifiers
# ---------------------------------------------------------------------------


def test_quoted_comma_stays_in_one_field() -> None:
    assert parse_csv_line('"Rent, Utilities",150.00') == ['Rent, Utilities', '150.00']


def test_parse_csv_line_strips_quotes_and_keeps_empty_fields() -> None:
    assert parse_csv_line('"a","",c,\r\n') == ['a', '', 'c', '']
    assert parse_csv_line('plain') == ['plain']


@pytest.mark.parametrize(
    "headers, expected",
    [
        (COMPLETE_HEADERS, CSVFormat.COMPLETE),
        (EXPENSE_HEADERS, CSVFormat.EXPENSES),
        (INCOME_HEADERS, CSVFormat.INCOMES),
        (['Fecha', 'Concepto', 'Movimiento', 'Saldo'], CSVFormat.BANK),
        (['Fecha', 'Descripción', 'Débito', 'Crédito'], CSVFormat.BANK),
        (['Date', 'Description', 'Amount'], CSVFormat.EXPENSES),
        (['Category', 'Amount'], CSVFormat.EXPENSES),
        (['Sueldo', 'Mes'], CSVFormat.INCOMES),
        (['Income', 'Month'], CSVFormat.INCOMES),
        (['a', 'b', 'c'], CSVFormat.UNKNOWN),
    ],
)
def test_detect_csv_format(headers, expected) -> None:
    assert detect_csv_format(headers) is expected


def test_detection_is_stable_on_exported_headers(ledger) -> None:
    for kind, expected in [
        (ExportKind.COMPLETE, CSVFormat.COMPLETE),
        (ExportKind.EXPENSES, CSVFormat.EXPENSES),
        (ExportKind.INCOMES, CSVFormat.INCOMES),
    ]:
        header_line = export_data_to_csv(ledger, kind).splitlines()[0]
        assert detect_csv_format(parse_csv_line(header_line)) is expected


def test_normalize_header() -> None:
    assert normalize_header(' "Total Cuotas" ') == 'total_cuotas'
    assert normalize_header('Categoría') == 'categoria'


@pytest.mark.parametrize(
    "values, expected",
    [
        (['gasto', 'Taxi', '500'], RowType.EXPENSE),
        (['Ingreso extra', 'Bono', '1000'], RowType.INCOME),
        (['SUELDO', '1000'], RowType.INCOME),
        (['Almuerzo', '-250'], RowType.EXPENSE),
        (['Algo', '250'], RowType.EXPENSE),
        ([], RowType.EXPENSE),
    ],
)
def test_detect_row_type(values, expected) -> None:
    assert detect_row_type(values) is expected


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def test_export_complete_layout(ledger) -> None:
    ledger.add_expense(_expense(recurring=True))
    ledger.add_fixed_income(MONTH, 5000)
    ledger.add_extra_income(MONTH, ExtraIncome('Venta', 300, 'other', MONTH))

    lines = export_data_to_csv(ledger, ExportKind.COMPLETE).split("\n")

    assert lines[0] == _line(*COMPLETE_HEADERS)
    assert lines[1] == _line(
        'gasto', 'Cena con amigos', '1200.00', 'Comida', '2024-05-10', MONTH, '1', '1', '1200.00', 'si',
    )
    assert lines[2].startswith(_line('ingreso_fijo', 'Ingreso Fijo Mensual', '5000.00'))
    assert lines[3].startswith(_line('ingreso_extra', 'Venta', '300.00', 'other'))
    assert len(lines) == 4


def test_export_incomes_layout(ledger) -> None:
    ledger.add_fixed_income(MONTH, 5000)
    ledger.set_extra_income_total(MONTH, 250)

    lines = export_data_to_csv(ledger, 'incomes').split("\n")

    assert lines[0] == _line(*INCOME_HEADERS)
    assert lines[1] == _line('fijo', '5000.00', 'Ingreso Fijo Mensual', MONTH, '2024-05-01')
    assert lines[2] == _line('extra', '250.00', 'Ingreso Extra Mensual', MONTH, '2024-05-01')


def test_export_empty_ledger_is_header_only(ledger) -> None:
    assert export_data_to_csv(ledger, ExportKind.EXPENSES) == _line(*EXPENSE_HEADERS)


def test_export_rejects_unknown_kind(ledger) -> None:
    with pytest.raises(ValueError):
        export_data_to_csv(ledger, 'everything')


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def test_expenses_round_trip(ledger, today) -> None:
    ledger.add_category(Category(name='Mascotas'))
    ledger.add_expense(_expense())
    ledger.add_expense(_expense(description='Alimento perro', amount=455.5, category='Mascotas'))
    ledger.add_expense(_expense(description='Televisor', amount=100, total_installments=3))
    text = export_data_to_csv(ledger, ExportKind.EXPENSES)

    target = Ledger(today=today)
    result = CSVInterchange(target).import_data_from_csv(text, 'expenses')

    def tuples(source):
        return sorted(
            (e.description, round(e.amount, 2), e.category, e.transaction_date)
            for e in source.iter_expenses()
        )

    assert result.as_dict() == {'imported': 5, 'errors': 0}
    assert tuples(target) == tuples(ledger)
    assert 'Mascotas' in target.category_names()


def test_expenses_round_trip_with_padded_description(ledger, today) -> None:
    ledger.add_expense(_expense(description='Pizza '))
    ledger.add_expense(_expense(description='  Cena\tcon amigos', amount=80))
    text = export_data_to_csv(ledger, ExportKind.EXPENSES)

    target = Ledger(today=today)
    result = CSVInterchange(target).import_data_from_csv(text, 'expenses')

    def tuples(source):
        return sorted((e.description, e.amount, e.category) for e in source.iter_expenses())

    assert result.as_dict() == {'imported': 2, 'errors': 0}
    assert tuples(target) == tuples(ledger) == [
        ('Cena\tcon amigos', 80.0, 'Comida'),
        ('Pizza', 1200.0, 'Comida'),
    ]


def test_imported_installments_are_regrouped(ledger, today) -> None:
    ledger.add_expense(_expense(description='Televisor', amount=100, total_installments=3))
    text = export_data_to_csv(ledger, ExportKind.EXPENSES)

    target = Ledger(today=today)
    CSVInterchange(target).import_data_from_csv(text)

    imported = list(target.iter_expenses())
    assert [e.amount for e in imported] == [33.33, 33.33, 33.34]
    assert [e.month for e in imported] == ['2024-05', '2024-06', '2024-07']
    assert len({e.original_id for e in imported}) == 1

    target.delete_expense(imported[0].id, imported[0].month)
    assert target.expenses == {}


def test_complete_round_trip_preserves_balance(ledger, today) -> None:
    ledger.add_expense(_expense(recurring=True))
    ledger.add_fixed_income(MONTH, 5000)
    ledger.set_extra_income_total(MONTH, 150)
    ledger.add_extra_income(MONTH, ExtraIncome('Venta', 300, 'other', MONTH))
    text = export_data_to_csv(ledger, ExportKind.COMPLETE)

    target = Ledger(today=today)
    result = CSVInterchange(target).import_data_from_csv(text)

    assert result.detected_format == 'complete'
    assert result.as_dict() == {'imported': 4, 'errors': 0}
    before = LedgerAggregator(ledger).calculate_balance(MONTH)
    after = LedgerAggregator(target).calculate_balance(MONTH)
    assert after.total_income == before.total_income == 5450
    assert after.total_expenses == before.total_expenses == 1200
    assert target.get_expenses(MONTH)[0].recurring is True


def test_complete_rows_with_unknown_type_are_errors(ledger) -> None:
    text = "\n".join([
        _line(*COMPLETE_HEADERS),
        _line('gasto', 'Taxi', '500', 'Transporte', '2024-05-02', MONTH, '1', '1', '500', 'no'),
        _line('bonus', 'Premio', '500', 'other', '2024-05-02', MONTH, '1', '1', '500', 'no'),
        _line('Ingreso Fijo', 'Sueldo', '9000', 'Ingreso', '2024-05-01', MONTH, '1', '1', '9000', 'no'),
    ])

    result = CSVInterchange(ledger).import_data_from_csv(text)

    assert result.as_dict() == {'imported': 2, 'errors': 1}
    assert ledger.get_income(MONTH).fixed == 9000


def test_malformed_rows_are_counted_not_raised(ledger) -> None:
    amounts = ['100', 'abc', '200', '300', 'N/A', '400', '500', '', '600', '700']
    rows = [
        _line(f'Gasto {i}', amount, 'Comida', f'2024-05-{i + 1:02d}', MONTH, '1', '1', amount)
        for i, amount in enumerate(amounts)
    ]
    text = "\n".join([_line(*EXPENSE_HEADERS)] + rows)

    result = CSVInterchange(ledger).import_data_from_csv(text)

    assert result.as_dict() == {'imported': 7, 'errors': 3}
    assert len(ledger.get_expenses(MONTH)) == 7


def test_validation_failures_are_row_errors(ledger) -> None:
    text = "\n".join([
        'descripcion,monto,categoria',
        'Pizza,1500,Comida',
        '<b>hack</b>,10,Comida',
        'Auto nuevo,2000000000,Transporte',
    ])

    result = CSVInterchange(ledger).import_data_from_csv(text)

    assert result.as_dict() == {'imported': 1, 'errors': 2}


def test_rejected_row_leaves_no_new_category(stored_ledger, store, today) -> None:
    text = "\n".join([
        'descripcion,monto,categoria',
        '<b>hack</b>,10,Hacking',
        'Vino,900000000000,Bodega',
        'Alimento,300,Mascotas',
    ])

    result = CSVInterchange(stored_ledger).import_data_from_csv(text)

    assert result.as_dict() == {'imported': 1, 'errors': 2}
    reloaded = Ledger(store=store, today=today)
    reloaded.load()
    for names in (stored_ledger.category_names(), reloaded.category_names()):
        assert 'Mascotas' in names
        assert 'Hacking' not in names
        assert 'Bodega' not in names


def test_recurring_flag_requires_exact_value(ledger) -> None:
    flags = ['si', 'true', 'SI', 'Sí', 'TRUE', 'no']
    rows = [
        _line('gasto', f'Gasto {i}', '100', 'Comida', '2024-05-02', MONTH, '1', '1', '100', flag)
        for i, flag in enumerate(flags)
    ]
    text = "\n".join([_line(*COMPLETE_HEADERS)] + rows)

    CSVInterchange(ledger).import_data_from_csv(text)

    recurring = {e.description: e.recurring for e in ledger.get_expenses(MONTH)}
    assert recurring == {
        'Gasto 0': True,
        'Gasto 1': True,
        'Gasto 2': False,
        'Gasto 3': False,
        'Gasto 4': False,
        'Gasto 5': False,
    }


def test_import_checks_achievements_once(ledger, monkeypatch) -> None:
    calls = []
    check = ledger.check_achievements
    monkeypatch.setattr(ledger, 'check_achievements', lambda: calls.append(1) or check())
    rows = [f'Gasto {i},{100 + i},Comida' for i in range(20)]
    text = "\n".join(['descripcion,monto,categoria'] + rows)

    result = CSVInterchange(ledger).import_data_from_csv(text)

    assert result.imported == 20
    assert calls == [1]
    assert 'first-expense' in {a.id for a in ledger.achievements}


@pytest.mark.parametrize("text", ["", "descripcion,monto", "descripcion,monto\n\n   \n"])
def test_file_without_data_rows_is_rejected(ledger, text) -> None:
    with pytest.raises(CSVImportError):
        CSVInterchange(ledger).import_data_from_csv(text)


def test_bank_statement_with_signed_movements(ledger) -> None:
    text = "\n".join([
        'Fecha,Concepto,Movimiento,Saldo',
        '10/05/2024,COMPRA CARREFOUR #123,-1500.50,1000',
        '11/05/2024,TRANSFERENCIA RECIBIDA,20000,21000',
        '12/05/2024,AJUSTE,0,21000',
        '13/05/2024,UBER *TRIP,abc,21000',
    ])

    result = CSVInterchange(ledger).import_data_from_csv(text)

    assert result.detected_format == 'bank'
    assert (result.imported, result.errors, result.skipped) == (2, 1, 1)
    expense = ledger.get_expenses(MONTH)[0]
    assert expense.category == 'Supermercado'
    assert expense.amount == 1500.5
    assert expense.description == 'COMPRA CARREFOUR 123'
    assert expense.transaction_date == '2024-05-10'
    extra = ledger.get_extra_incomes(MONTH)[0]
    assert extra.amount == 20000
    assert extra.category == 'other'


def test_bank_statement_with_debit_and_credit_columns(ledger) -> None:
    text = "\n".join([
        'Fecha,Descripción,Débito,Crédito',
        '01/05/2024,Netflix,1200,',
        '02/05/2024,Sueldo,,50000',
    ])

    result = CSVInterchange(ledger).import_data_from_csv(text)

    assert result.as_dict() == {'imported': 2, 'errors': 0}
    assert ledger.get_expenses(MONTH)[0].category == 'Ocio'
    assert ledger.get_extra_incomes(MONTH)[0].amount == 50000


def test_unknown_layout_uses_row_heuristics(ledger) -> None:
    text = "\n".join([
        'a,b,c',
        'gasto,Taxi,500',
        'ingreso,Bono,1000',
        'Almuerzo,-250',
    ])

    result = CSVInterchange(ledger).import_data_from_csv(text)

    assert result.detected_format == 'unknown'
    assert result.as_dict() == {'imported': 3, 'errors': 0}
    expenses = {e.description: e for e in ledger.get_expenses(MONTH)}
    assert expenses['Taxi'].category == 'Transporte'
    assert expenses['Almuerzo'].amount == 250
    assert ledger.get_extra_incomes(MONTH)[0].description == 'Bono'


def test_hint_applies_to_unknown_layout(ledger) -> None:
    text = "a,b\nBono,1000\nAguinaldo,2500"

    result = CSVInterchange(ledger).import_data_from_csv(text, 'incomes')

    assert result.as_dict() == {'imported': 2, 'errors': 0}
    assert sum(e.amount for e in ledger.get_extra_incomes(MONTH)) == 3500


def test_hint_is_ignored_when_layout_is_detected(ledger) -> None:
    text = "descripcion,monto,categoria\nPizza,1500,Comida"

    result = CSVInterchange(ledger).import_data_from_csv(text, 'incomes')

    assert result.detected_format == 'expenses'
    assert len(ledger.get_expenses(MONTH)) == 1
    assert ledger.get_extra_incomes(MONTH) == []
