"""Input validation and sanitization for ledger records.

Validators return a :class:`ValidationResult` instead of raising so that
forms can collect every problem at once.  :func:`ensure_valid_expense` is the
raising variant used by the ledger's mutation operations, which is what the
CSV importer relies on to reject individual rows.

Messages are user-facing and kept in Spanish.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .errors import ValidationError
from .models import Expense
from .parsing import is_month_key, parse_signed_amount

MAX_AMOUNT = 999_999_999
MAX_PERCENTAGE = 100
MIN_WARNING_PERCENTAGE = 50
MAX_INSTALLMENTS = 60
DESCRIPTION_LENGTH = 200
NAME_LENGTH = 100
CATEGORY_LENGTH = 50

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DESCRIPTION_RE = re.compile(r"^[a-zA-Z0-9 \t\-_,.!?áéíóúÁÉÍÓÚñÑüÜ]+$")
_DESCRIPTION_DISALLOWED_RE = re.compile(r"[^a-zA-Z0-9 \t\-_,.!?áéíóúÁÉÍÓÚñÑüÜ]")
_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None
    value: Any = None


@dataclass
class FormValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    sanitized: Dict[str, Any] = field(default_factory=dict)


def _ok(value: Any) -> ValidationResult:
    return ValidationResult(True, None, value)


def _fail(message: str) -> ValidationResult:
    return ValidationResult(False, message, None)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------


def sanitize_text(text: Any) -> str:
    """Strip HTML tags and escape what remains."""
    if not isinstance(text, str):
        return ""
    return html.escape(_TAG_RE.sub("", text).strip(), quote=False)


def sanitize_description(text: Any) -> str:
    """Drop characters outside the description alphabet and truncate.

    Used for bank statement descriptions, which routinely carry ``#``, ``*``
    or ``/``.
    """
    if not isinstance(text, str):
        return ""
    cleaned = _DESCRIPTION_DISALLOWED_RE.sub(" ", _TAG_RE.sub("", text))
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned[:DESCRIPTION_LENGTH].rstrip()


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------


def validate_amount(amount: Any) -> ValidationResult:
    if _blank(amount):
        return _fail("El monto es requerido")
    number = parse_signed_amount(amount)
    if number is None:
        return _fail("El monto debe ser un número válido")
    if number < 0:
        return _fail("El monto no puede ser negativo")
    if number > MAX_AMOUNT:
        return _fail(f"El monto no puede exceder ${MAX_AMOUNT:,}")
    return _ok(round(number, 2))


def validate_percentage(percentage: Any) -> ValidationResult:
    if _blank(percentage):
        return _ok(0.0)  # optional field
    number = parse_signed_amount(percentage)
    if number is None:
        return _fail("El porcentaje debe ser un número válido")
    if number < 0:
        return _fail("El porcentaje no puede ser negativo")
    if number > MAX_PERCENTAGE:
        return _fail(f"El porcentaje no puede exceder {MAX_PERCENTAGE}%")
    return _ok(number)


def validate_warning_percentage(percentage: Any) -> ValidationResult:
    result = validate_percentage(percentage)
    if not result.is_valid:
        return result
    if _blank(percentage):
        return _fail("El porcentaje de aviso es requerido")
    if result.value < MIN_WARNING_PERCENTAGE:
        return _fail(f"El porcentaje de aviso debe estar entre {MIN_WARNING_PERCENTAGE}% y {MAX_PERCENTAGE}%")
    return result


def validate_date(value: Any, today: Optional[date] = None) -> ValidationResult:
    if not value or not isinstance(value, str):
        return _fail("La fecha es requerida")
    if not _DATE_RE.match(value):
        return _fail("Formato de fecha inválido (use YYYY-MM-DD)")
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return _fail("Fecha inválida")

    reference = today or date.today()
    if parsed > _shift_years(reference, 10):
        return _fail("La fecha no puede ser más de 10 años en el futuro")
    if parsed < _shift_years(reference, -100):
        return _fail("La fecha no puede ser más de 100 años en el pasado")
    return _ok(value)


def _shift_years(reference: date, years: int) -> date:
    try:
        return reference.replace(year=reference.year + years)
    except ValueError:  # 29 February
        return reference.replace(year=reference.year + years, day=28)


def validate_month_key(value: Any) -> ValidationResult:
    if not value or not isinstance(value, str):
        return _fail("El mes/año es requerido")
    if not is_month_key(value):
        return _fail("Formato de mes/año inválido (use YYYY-MM)")
    year = int(value[:4])
    if year < 1900 or year > 2100:
        return _fail("Año inválido")
    return _ok(value.strip())


def validate_description(description: Any) -> ValidationResult:
    if not description or not isinstance(description, str):
        return _fail("La descripción es requerida")
    trimmed = description.strip()
    if not trimmed:
        return _fail("La descripción no puede estar vacía")
    if len(trimmed) > DESCRIPTION_LENGTH:
        return _fail(f"La descripción no puede exceder {DESCRIPTION_LENGTH} caracteres")
    if not _DESCRIPTION_RE.match(trimmed):
        return _fail("La descripción contiene caracteres no permitidos")
    return _ok(sanitize_text(trimmed))


def validate_name(name: Any) -> ValidationResult:
    if not name or not isinstance(name, str):
        return _fail("El nombre es requerido")
    trimmed = name.strip()
    if not trimmed:
        return _fail("El nombre no puede estar vacío")
    if len(trimmed) > NAME_LENGTH:
        return _fail(f"El nombre no puede exceder {NAME_LENGTH} caracteres")
    if not _DESCRIPTION_RE.match(trimmed):
        return _fail("El nombre contiene caracteres no permitidos")
    return _ok(sanitize_text(trimmed))


def validate_category(category: Any) -> ValidationResult:
    if not category or not isinstance(category, str):
        return _fail("La categoría es requerida")
    trimmed = category.strip()
    if not trimmed:
        return _fail("La categoría no puede estar vacía")
    if len(trimmed) > CATEGORY_LENGTH:
        return _fail(f"La categoría no puede exceder {CATEGORY_LENGTH} caracteres")
    return _ok(sanitize_text(trimmed))


def validate_installment_count(count: Any) -> ValidationResult:
    if _blank(count):
        return _ok(1)
    number = parse_signed_amount(count)
    if number is None or number != int(number):
        return _fail("El número de cuotas debe ser un número entero")
    number = int(number)
    if number < 1:
        return _fail("El número de cuotas debe ser al menos 1")
    if number > MAX_INSTALLMENTS:
        return _fail(f"El número de cuotas no puede exceder {MAX_INSTALLMENTS}")
    return _ok(number)


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------


def _collect(form: FormValidation, key: str, result: ValidationResult, prefix: str = "") -> None:
    if result.is_valid:
        form.sanitized[key] = result.value
    else:
        form.errors.append(f"{prefix}{result.error}")


def validate_expense_form(form_data: Dict[str, Any], today: Optional[date] = None) -> FormValidation:
    """Validate raw expense form input.

    Expected keys: ``description``, ``amount``, ``category``,
    ``transaction_date`` and optionally ``has_installments``,
    ``installments_count``, ``installments_interest``.
    """
    form = FormValidation(is_valid=False)
    _collect(form, 'description', validate_description(form_data.get('description')))
    _collect(form, 'amount', validate_amount(form_data.get('amount')))
    _collect(form, 'category', validate_category(form_data.get('category')))
    _collect(form, 'transaction_date', validate_date(form_data.get('transaction_date'), today=today))

    if form_data.get('has_installments'):
        _collect(form, 'installments_count', validate_installment_count(form_data.get('installments_count')))
        interest = form_data.get('installments_interest')
        if not _blank(interest):
            _collect(form, 'installments_interest', validate_percentage(interest))

    form.is_valid = not form.errors
    return form


def validate_income_form(form_data: Dict[str, Any], today: Optional[date] = None) -> FormValidation:
    """Validate raw income form input (``type`` is ``fixed`` or ``extra``)."""
    form = FormValidation(is_valid=False)
    income_type = form_data.get('type')
    if income_type not in ('fixed', 'extra'):
        form.errors.append("Tipo de ingreso inválido")
    else:
        form.sanitized['type'] = income_type

    if income_type == 'extra':
        _collect(form, 'description', validate_description(form_data.get('description')))
    elif income_type == 'fixed':
        form.sanitized['description'] = 'Ingreso Fijo'

    _collect(form, 'amount', validate_amount(form_data.get('amount')))
    if form_data.get('date'):
        _collect(form, 'date', validate_date(form_data.get('date'), today=today))

    form.is_valid = not form.errors
    return form


def ensure_valid_expense(
    expense: Expense,
    category_names: Iterable[str],
    today: Optional[date] = None,
) -> Expense:
    """Raise :class:`ValidationError` listing every problem with ``expense``.

    Returns a copy with the description and category trimmed, which is the
    form the ledger stores.
    """
    errors: List[str] = []
    description = validate_description(expense.description)
    for result in (
        description,
        validate_amount(expense.amount),
        validate_category(expense.category),
        validate_date(expense.transaction_date, today=today),
        validate_month_key(expense.month),
        validate_installment_count(expense.total_installments),
    ):
        if not result.is_valid:
            errors.append(result.error)

    if isinstance(expense.category, str) and expense.category.strip():
        if expense.category.strip() not in set(category_names):
            errors.append(f"La categoría '{expense.category}' no existe")

    try:
        installment = int(expense.installment)
        total = int(expense.total_installments)
    except (TypeError, ValueError):
        errors.append("Cuota inválida")
    else:
        if installment < 1 or installment > max(total, 1):
            errors.append("La cuota actual debe estar entre 1 y el total de cuotas")

    if errors:
        raise ValidationError(errors)
    return replace(expense, description=description.value, category=expense.category.strip())
