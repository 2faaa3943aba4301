from __future__ import annotations

import pytest

from finzn.categorization import (
    DEFAULT_CATEGORIES,
    categorize_transaction,
    default_categories,
    strip_accents,
)


@pytest.mark.parametrize(
    "description, expected",
    [
        ("COMPRA CARREFOUR EXPRESS 123", "Supermercado"),
        ("UBER *TRIP HELP.UBER.COM", "Transporte"),
        ("Farmacity Sucursal 22", "Salud"),
        ("NETFLIX.COM", "Ocio"),
        ("Pago EDENOR factura", "Servicios"),
        ("Rappi pedido", "Comida"),
        ("Médico clínico", "Salud"),
        ("TRANSFERENCIA A TERCEROS", "Otros"),
        ("", "Otros"),
        (None, "Otros"),
    ],
)
def test_categorize_transaction(description, expected) -> None:
    assert categorize_transaction(description) == expected


def test_keywords_match_whole_words_only() -> None:
    # "dia" is a supermarket keyword but must not fire inside "mediano"
    assert categorize_transaction("Pedido mediano") == "Otros"


def test_custom_keywords_and_fallback() -> None:
    keywords = {'Mascotas': ['veterinaria']}
    assert categorize_transaction("VETERINARIA SAN ROQUE", keywords=keywords) == "Mascotas"
    assert categorize_transaction("CARREFOUR", keywords=keywords, fallback="Varios") == "Varios"


def test_default_categories() -> None:
    categories = default_categories()
    assert [c.name for c in categories] == [entry['name'] for entry in DEFAULT_CATEGORIES]
    assert 'Otros' in [c.name for c in categories]
    assert len({c.id for c in categories}) == len(categories)


def test_strip_accents() -> None:
    assert strip_accents("Categoría Ñandú") == "Categoria Nandu"
