"""Exceptions raised by the ledger core."""

from __future__ import annotations

from typing import Iterable, List


class FinznError(Exception):
    """Base class for ledger errors."""


class ValidationError(FinznError, ValueError):
    """A record or form failed field-level validation."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = [str(e) for e in errors]
        super().__init__("; ".join(self.errors) or "Datos inválidos")


class CSVImportError(FinznError):
    """The whole CSV file was rejected before any row was processed."""


class CategoryInUseError(FinznError):
    """A category cannot be deleted while expenses still reference it."""

    def __init__(self, category: str, usages: int):
        self.category = category
        self.usages = usages
        super().__init__(
            f"No se puede eliminar la categoría '{category}': está siendo utilizada por {usages} gasto(s)"
        )


class DuplicateCategoryError(FinznError):
    """A category with the same name already exists for the user."""


class ExpenseNotFoundError(FinznError, LookupError):
    """No expense with the given id exists in the requested month."""
