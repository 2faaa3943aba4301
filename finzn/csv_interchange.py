"""CSV export and import of ledger records.

Export flattens the ledger into one of three fixed layouts.  Import accepts
those layouts back, plus bank statements and loosely structured files:

* the header row is classified once by :func:`detect_csv_format` into a
  closed :class:`CSVFormat`;
* each data row is split by :func:`parse_csv_line` and handed to the row
  handler for that format;
* records go through the same :class:`~finzn.ledger.Ledger` mutations the
  forms use, so validation and achievements apply to imported data too.

A malformed row is counted and skipped.  Only a file without a single data
row is rejected as a whole.
"""

from __future__ import annotations

import csv
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .categorization import categorize_transaction, strip_accents
from .config import EXTRA_INCOME_CATEGORY
from .errors import CSVImportError, FinznError
from .formatting import format_csv_amount
from .ledger import Ledger
from .models import Category, Expense, ExtraIncome, ImportResult, new_id
from .parsing import is_month_key, parse_date, parse_int, parse_money, parse_signed_amount
from .validation import ensure_valid_expense, sanitize_description

logger = logging.getLogger(__name__)


class CSVFormat(str, Enum):
    COMPLETE = "complete"
    BANK = "bank"
    EXPENSES = "expenses"
    INCOMES = "incomes"
    UNKNOWN = "unknown"


class ExportKind(str, Enum):
    COMPLETE = "complete"
    EXPENSES = "expenses"
    INCOMES = "incomes"


class RowType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class CompleteRowType(str, Enum):
    """Accepted values of the ``tipo`` column in the complete layout."""
    EXPENSE = "gasto"
    FIXED_INCOME = "ingreso_fijo"
    EXTRA_INCOME = "ingreso_extra"


COMPLETE_HEADERS = [
    'tipo', 'descripcion', 'monto', 'categoria', 'fecha', 'mes',
    'cuota_actual', 'total_cuotas', 'monto_original', 'es_recurrente',
]
EXPENSE_HEADERS = [
    'descripcion', 'monto', 'categoria', 'fecha', 'mes',
    'cuota_actual', 'total_cuotas', 'monto_original',
]
INCOME_HEADERS = ['tipo', 'monto', 'descripcion', 'mes', 'fecha']

FIXED_INCOME_DESCRIPTION = "Ingreso Fijo Mensual"
LUMP_EXTRA_DESCRIPTION = "Ingreso Extra Mensual"
BANK_DEFAULT_DESCRIPTION = "Movimiento bancario"

# ---------------------------------------------------------------------------
# Header vocabulary
# ---------------------------------------------------------------------------

# Substrings looked up in the joined header line
_CURRENT_INSTALLMENT_TOKENS = ('cuota_actual', 'current_installment', 'installment_number')
_TOTAL_INSTALLMENT_TOKENS = ('total_cuotas', 'total_installments')
_TYPE_TOKENS = ('tipo', 'type')
_DATE_TOKENS = ('fecha', 'date')
_MOVEMENT_TOKENS = ('debito', 'debit', 'credito', 'credit', 'movimiento', 'movement')
_EXPENSE_TOKENS = ('gasto', 'expense', 'categoria', 'category')
_CATEGORY_TOKENS = ('categoria', 'category', 'rubro')
_DESCRIPTION_TOKENS = ('descripcion', 'description', 'concepto', 'detalle')
_INCOME_TOKENS = ('ingreso', 'income', 'sueldo', 'salario', 'salary')

# Exact column names, first match wins
DESCRIPTION_KEYS = ('descripcion', 'description', 'concepto', 'detalle', 'detail', 'nombre', 'name')
AMOUNT_KEYS = ('monto', 'amount', 'importe', 'valor', 'value')
CATEGORY_KEYS = ('categoria', 'category', 'rubro')
DATE_KEYS = ('fecha', 'date', 'transaction_date', 'fecha_operacion', 'fecha_de_operacion')
MONTH_KEYS = ('mes', 'month', 'periodo', 'period')
INSTALLMENT_KEYS = ('cuota_actual', 'current_installment', 'cuota', 'installment')
TOTAL_INSTALLMENT_KEYS = ('total_cuotas', 'total_installments', 'cuotas', 'installments')
ORIGINAL_AMOUNT_KEYS = ('monto_original', 'original_amount')
RECURRING_KEYS = ('es_recurrente', 'recurrente', 'recurring')
TYPE_KEYS = ('tipo', 'type')
INCOME_AMOUNT_KEYS = AMOUNT_KEYS + ('ingreso', 'income', 'sueldo', 'salario', 'salary')
BANK_AMOUNT_KEYS = AMOUNT_KEYS + ('movimiento', 'movement')
DEBIT_KEYS = ('debito', 'debit', 'debe', 'cargo')
CREDIT_KEYS = ('credito', 'credit', 'haber', 'abono')

_FIXED_INCOME_VALUES = {'fijo', 'fixed', 'ingreso_fijo', 'sueldo', 'salario', 'salary'}
_EXTRA_INCOME_VALUES = {'', 'extra', 'ingreso_extra', 'otro', 'other'}
_TRUE_VALUES = {'si', 'true'}


class _RowError(FinznError):
    """A single CSV row could not be imported."""


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------


def normalize_header(value: str) -> str:
    """Lower-case, accent-free, underscore-joined column name."""
    text = strip_accents(str(value).replace('"', '')).strip().lower()
    return "_".join(text.split())


def _normalize_token(value: Optional[str]) -> str:
    return normalize_header(value or "")


def _contains(joined: str, tokens: Sequence[str]) -> bool:
    return any(token in joined for token in tokens)


def detect_csv_format(headers: Sequence[str]) -> CSVFormat:
    """Classify a header row.

    Rules are checked in order:

    1. current installment, total installments and type columns: COMPLETE
    2. a date column plus a debit/credit/movement column: BANK
    3. expense or category columns, or a description column in a layout
       that is not income-shaped: EXPENSES
    4. income/salary columns, or a type column without a category: INCOMES

    Example:
        >>> detect_csv_format(EXPENSE_HEADERS)
        <CSVFormat.EXPENSES: 'expenses'>
        >>> detect_csv_format(['Fecha', 'Concepto', 'Movimiento', 'Saldo'])
        <CSVFormat.BANK: 'bank'>
    """
    joined = "|".join(normalize_header(h) for h in headers)
    has_type = _contains(joined, _TYPE_TOKENS)
    has_category = _contains(joined, _CATEGORY_TOKENS)

    if (
        _contains(joined, _CURRENT_INSTALLMENT_TOKENS)
        and _contains(joined, _TOTAL_INSTALLMENT_TOKENS)
        and has_type
    ):
        return CSVFormat.COMPLETE
    if _contains(joined, _DATE_TOKENS) and _contains(joined, _MOVEMENT_TOKENS):
        return CSVFormat.BANK

    income_shaped = _contains(joined, _INCOME_TOKENS) or (has_type and not has_category)
    if _contains(joined, _EXPENSE_TOKENS):
        return CSVFormat.EXPENSES
    if _contains(joined, _DESCRIPTION_TOKENS) and not income_shaped:
        return CSVFormat.EXPENSES
    if income_shaped:
        return CSVFormat.INCOMES
    return CSVFormat.UNKNOWN


def parse_csv_line(line: str) -> List[str]:
    """Split one CSV line on commas outside double-quoted spans.

    Example:
        >>> parse_csv_line('"Rent, Utilities",150.00')
        ['Rent, Utilities', '150.00']
    """
    fields: List[str] = []
    current: List[str] = []
    inside_quotes = False
    for char in line.rstrip("\r\n"):
        if char == '"':
            inside_quotes = not inside_quotes
        elif char == ',' and not inside_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return [field.replace('"', '').strip() for field in fields]


def _type_marker(value: Optional[str]) -> Optional[RowType]:
    token = _normalize_token(value)
    if 'gasto' in token or 'expense' in token:
        return RowType.EXPENSE
    if 'ingreso' in token or 'income' in token or 'sueldo' in token:
        return RowType.INCOME
    return None


def detect_row_type(values: Sequence[str]) -> RowType:
    """Guess whether a row of an unrecognized layout is an expense or income.

    A type word in the first column decides; otherwise a negative amount in
    the second column means expense.  Anything else is treated as expense.
    """
    if not values:
        return RowType.EXPENSE
    marker = _type_marker(values[0])
    if marker is not None:
        return marker
    if len(values) > 1:
        amount = parse_signed_amount(values[1])
        if amount is not None and amount < 0:
            return RowType.EXPENSE
    return RowType.EXPENSE


def _pick(
    fields: Dict[str, str],
    keys: Sequence[str],
    values: Sequence[str] = (),
    position: Optional[int] = None,
) -> str:
    for key in keys:
        if key in fields:
            return fields[key]
    if position is not None and 0 <= position < len(values):
        return values[position]
    return ""


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def _to_csv(headers: List[str], rows: List[List[str]]) -> str:
    frame = pd.DataFrame(rows, columns=headers, dtype=object)
    text = frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    return text.rstrip("\n")


def _expense_fields(expense: Expense) -> List[str]:
    original = expense.original_amount if expense.original_amount is not None else expense.amount
    return [
        expense.description,
        format_csv_amount(parse_money(expense.amount)),
        expense.category,
        expense.transaction_date,
        expense.month,
        str(expense.installment or 1),
        str(expense.total_installments or 1),
        format_csv_amount(parse_money(original)),
    ]


def _income_rows(ledger: Ledger) -> List[Tuple[str, str, float, str, str, str]]:
    """(kind, description, amount, category, date, month) for every income."""
    rows = []
    months = sorted(set(ledger.incomes) | set(ledger.extra_incomes))
    for month in months:
        income = ledger.get_income(month)
        if parse_money(income.fixed) > 0:
            rows.append(('fijo', FIXED_INCOME_DESCRIPTION, income.fixed, 'Ingreso', f"{month}-01", month))
        if parse_money(income.extra) > 0:
            rows.append(('extra', LUMP_EXTRA_DESCRIPTION, income.extra, EXTRA_INCOME_CATEGORY, f"{month}-01", month))
        for extra in ledger.get_extra_incomes(month):
            rows.append((
                'extra', extra.description, extra.amount, extra.category,
                (extra.created_at or f"{month}-01")[:10], month,
            ))
    return rows


def export_data_to_csv(ledger: Ledger, kind: Union[ExportKind, str] = ExportKind.COMPLETE) -> str:
    """Serialize the ledger as quoted CSV with a header row.

    ``kind`` selects the complete, expenses-only or incomes-only layout.
    Monetary values always carry two decimals.
    """
    kind = ExportKind(kind)

    if kind is ExportKind.EXPENSES:
        rows = [_expense_fields(expense) for expense in ledger.iter_expenses()]
        return _to_csv(EXPENSE_HEADERS, rows)

    if kind is ExportKind.INCOMES:
        rows = [
            [income_type, format_csv_amount(parse_money(amount)), description, month, fecha]
            for income_type, description, amount, _category, fecha, month in _income_rows(ledger)
        ]
        return _to_csv(INCOME_HEADERS, rows)

    rows = []
    for expense in ledger.iter_expenses():
        rows.append(
            [CompleteRowType.EXPENSE.value]
            + _expense_fields(expense)
            + ['si' if expense.recurring else 'no']
        )
    for income_type, description, amount, category, fecha, month in _income_rows(ledger):
        tipo = CompleteRowType.FIXED_INCOME if income_type == 'fijo' else CompleteRowType.EXTRA_INCOME
        money = format_csv_amount(parse_money(amount))
        rows.append([tipo.value, description, money, category, fecha, month, '1', '1', money, 'no'])
    return _to_csv(COMPLETE_HEADERS, rows)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


class CSVInterchange:
    """Import/export front end bound to one ledger."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        # (description, category, original amount, total, date) -> original_id
        self._installment_groups: Dict[Tuple, str] = {}

    def export_data_to_csv(self, kind: Union[ExportKind, str] = ExportKind.COMPLETE) -> str:
        return export_data_to_csv(self.ledger, kind)

    def import_data_from_csv(self, text: str, hinted_type: str = "auto") -> ImportResult:
        """Import CSV text into the ledger.

        ``hinted_type`` (``auto``, ``expenses`` or ``incomes``) is only used
        when the header row is not recognized.  Raises
        :class:`~finzn.errors.CSVImportError` when there is no data row.
        """
        lines = [line for line in (text or "").splitlines() if line.strip()]
        if len(lines) < 2:
            raise CSVImportError("El archivo CSV debe tener al menos una fila de encabezado y una de datos")

        headers = [normalize_header(h) for h in parse_csv_line(lines[0])]
        detected = detect_csv_format(headers)
        layout = detected
        if detected is CSVFormat.UNKNOWN:
            if hinted_type == CSVFormat.EXPENSES.value:
                layout = CSVFormat.EXPENSES
            elif hinted_type == CSVFormat.INCOMES.value:
                layout = CSVFormat.INCOMES

        handlers: Dict[CSVFormat, Callable[[Dict[str, str], List[str]], bool]] = {
            CSVFormat.COMPLETE: self._import_complete_row,
            CSVFormat.BANK: self._import_bank_row,
            CSVFormat.EXPENSES: self._import_expense_row,
            CSVFormat.INCOMES: self._import_income_row,
            CSVFormat.UNKNOWN: self._import_unknown_row,
        }
        handler = handlers[layout]

        result = ImportResult(detected_format=detected.value)
        self._installment_groups = {}
        with self.ledger.deferred_achievements():
            for line_number, line in enumerate(lines[1:], start=2):
                values = parse_csv_line(line)
                fields = dict(zip(headers, values))
                try:
                    imported = handler(fields, values)
                except (FinznError, ValueError) as exc:
                    result.errors += 1
                    logger.warning("CSV line %d skipped: %s", line_number, exc)
                    continue
                if imported:
                    result.imported += 1
                else:
                    result.skipped += 1

        logger.info(
            "CSV import (%s as %s): %d imported, %d errors, %d skipped",
            detected.value, layout.value, result.imported, result.errors, result.skipped,
        )
        return result

    # Row handlers return True when a record was written, False when the row
    # was intentionally dropped, and raise for malformed rows.

    def _import_complete_row(self, fields: Dict[str, str], values: List[str]) -> bool:
        token = _normalize_token(fields.get('tipo'))
        try:
            row_type = CompleteRowType(token)
        except ValueError:
            raise _RowError(f"Tipo de fila desconocido: '{fields.get('tipo', '')}'") from None

        amount = self._required_amount(fields.get('monto'))
        transaction_date = parse_date(fields.get('fecha'), today=self.ledger.today)
        month = self._month_for(fields.get('mes'), transaction_date)

        if row_type is CompleteRowType.EXPENSE:
            return self._add_expense(
                description=fields.get('descripcion', ''),
                amount=amount,
                category=fields.get('categoria', ''),
                transaction_date=transaction_date,
                month=month,
                installment=fields.get('cuota_actual'),
                total_installments=fields.get('total_cuotas'),
                original_amount=fields.get('monto_original'),
                recurring=fields.get('es_recurrente'),
            )
        if row_type is CompleteRowType.FIXED_INCOME:
            return self._add_fixed_income(month, amount)
        return self._add_extra_income(
            month, fields.get('descripcion', ''), amount, fields.get('categoria') or EXTRA_INCOME_CATEGORY,
        )

    def _import_expense_row(self, fields: Dict[str, str], values: List[str]) -> bool:
        return self._expense_from_fields(fields, values, offset=0)

    def _expense_from_fields(self, fields: Dict[str, str], values: List[str], offset: int) -> bool:
        description = _pick(fields, DESCRIPTION_KEYS, values, offset)
        amount = self._required_amount(_pick(fields, AMOUNT_KEYS, values, offset + 1))
        transaction_date = parse_date(_pick(fields, DATE_KEYS), today=self.ledger.today)
        return self._add_expense(
            description=description,
            amount=amount,
            category=_pick(fields, CATEGORY_KEYS) or categorize_transaction(description),
            transaction_date=transaction_date,
            month=self._month_for(_pick(fields, MONTH_KEYS), transaction_date),
            installment=_pick(fields, INSTALLMENT_KEYS),
            total_installments=_pick(fields, TOTAL_INSTALLMENT_KEYS),
            original_amount=_pick(fields, ORIGINAL_AMOUNT_KEYS),
            recurring=_pick(fields, RECURRING_KEYS),
        )

    def _import_income_row(self, fields: Dict[str, str], values: List[str]) -> bool:
        return self._income_from_fields(fields, values, offset=0)

    def _income_from_fields(self, fields: Dict[str, str], values: List[str], offset: int) -> bool:
        income_type = _normalize_token(_pick(fields, TYPE_KEYS))
        amount = self._required_amount(_pick(fields, INCOME_AMOUNT_KEYS, values, offset + 1))
        transaction_date = parse_date(_pick(fields, DATE_KEYS), today=self.ledger.today)
        month = self._month_for(_pick(fields, MONTH_KEYS), transaction_date)

        if income_type in _FIXED_INCOME_VALUES:
            return self._add_fixed_income(month, amount)
        if income_type not in _EXTRA_INCOME_VALUES:
            raise _RowError(f"Tipo de ingreso desconocido: '{income_type}'")
        return self._add_extra_income(
            month,
            _pick(fields, DESCRIPTION_KEYS, values, offset),
            amount,
            _pick(fields, CATEGORY_KEYS) or EXTRA_INCOME_CATEGORY,
        )

    def _import_bank_row(self, fields: Dict[str, str], values: List[str]) -> bool:
        amount = self._bank_amount(fields)
        if amount == 0:
            return False
        transaction_date = parse_date(_pick(fields, DATE_KEYS), today=self.ledger.today)
        raw_description = _pick(fields, DESCRIPTION_KEYS)
        description = sanitize_description(raw_description) or BANK_DEFAULT_DESCRIPTION
        if amount < 0:
            return self._add_expense(
                description=description,
                amount=abs(amount),
                category=categorize_transaction(raw_description),
                transaction_date=transaction_date,
                month=transaction_date[:7],
            )
        return self._add_extra_income(transaction_date[:7], description, amount, EXTRA_INCOME_CATEGORY)

    def _bank_amount(self, fields: Dict[str, str]) -> float:
        if any(key in fields for key in BANK_AMOUNT_KEYS):
            amount = parse_signed_amount(_pick(fields, BANK_AMOUNT_KEYS))
            if amount is None:
                raise _RowError("Monto inválido")
            return round(amount, 2)

        debit_raw = _pick(fields, DEBIT_KEYS)
        credit_raw = _pick(fields, CREDIT_KEYS)
        debit = parse_signed_amount(debit_raw)
        credit = parse_signed_amount(credit_raw)
        if debit is None and credit is None:
            raise _RowError("Monto inválido")
        return round(abs(credit or 0.0) - abs(debit or 0.0), 2)

    def _import_unknown_row(self, fields: Dict[str, str], values: List[str]) -> bool:
        offset = 1 if values and _type_marker(values[0]) is not None else 0
        if detect_row_type(values) is RowType.INCOME:
            return self._income_from_fields(fields, values, offset)
        return self._expense_from_fields(fields, values, offset)

    # Shared record construction -------------------------------------------

    @staticmethod
    def _required_amount(raw: Optional[str]) -> float:
        amount = parse_signed_amount(raw)
        if amount is None:
            raise _RowError(f"Monto inválido: '{raw or ''}'")
        return round(abs(amount), 2)

    def _month_for(self, raw_month: Optional[str], transaction_date: str) -> str:
        if raw_month and is_month_key(raw_month):
            return raw_month.strip()
        return transaction_date[:7]

    def _ensure_category(self, name: str) -> None:
        if name in self.ledger.category_names():
            return
        result = self.ledger.add_category(Category(name=name))
        if not result:
            raise _RowError(result.error)
        logger.info("Created category '%s' during import", name)

    def _add_expense(
        self,
        description: str,
        amount: float,
        category: str,
        transaction_date: str,
        month: str,
        installment: Optional[str] = None,
        total_installments: Optional[str] = None,
        original_amount: Optional[str] = None,
        recurring: Optional[str] = None,
    ) -> bool:
        category = (category or "").strip()
        total = parse_int(total_installments, default=1)
        original = parse_money(original_amount) if original_amount else None

        expense = Expense(
            description=description,
            amount=amount,
            category=category,
            transaction_date=transaction_date,
            month=month,
            installment=parse_int(installment, default=1),
            total_installments=total,
            original_amount=original,
            recurring=(recurring or "").strip() in _TRUE_VALUES,
        )
        # A rejected row must not leave a new category behind.
        known = self.ledger.category_names()
        ensure_valid_expense(expense, known + [category], today=self.ledger.today)
        if category not in known:
            self._ensure_category(category)
        if total > 1:
            key = (description, category, original, total, transaction_date)
            expense.original_id = self._installment_groups.setdefault(key, new_id())

        result = self.ledger.add_expense(expense, split=False)
        if not result:
            raise _RowError(result.error)
        return True

    def _add_fixed_income(self, month: str, amount: float) -> bool:
        result = self.ledger.add_fixed_income(month, amount)
        if not result:
            raise _RowError(result.error)
        return True

    def _add_extra_income(self, month: str, description: str, amount: float, category: str) -> bool:
        extra = ExtraIncome(
            description=description,
            amount=amount,
            category=category,
            month=month,
        )
        result = self.ledger.add_extra_income(month, extra)
        if not result:
            raise _RowError(result.error)
        return True
