"""Category defaults and keyword-based categorization of bank movements.

Bank statements carry free-text descriptions only.  Expenses imported from
them are assigned a category by searching the description for known Spanish
keywords; the first category with a matching keyword wins and anything else
lands in ``Otros``.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Dict, List, Optional

from .config import FALLBACK_CATEGORY
from .models import Category

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {'name': 'Comida', 'icon': '🍔', 'color': '#ef4444'},
    {'name': 'Transporte', 'icon': '🚗', 'color': '#3b82f6'},
    {'name': 'Salud', 'icon': '💊', 'color': '#8b5cf6'},
    {'name': 'Ocio', 'icon': '🎉', 'color': '#f59e0b'},
    {'name': 'Supermercado', 'icon': '🛒', 'color': '#10b981'},
    {'name': 'Servicios', 'icon': '📱', 'color': '#6b7280'},
    {'name': FALLBACK_CATEGORY, 'icon': '📦', 'color': '#9ca3af'},
]

# Checked in order; keywords are matched as whole words on accent-free text
CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    'Supermercado': [
        'supermercado', 'super', 'carrefour', 'coto', 'dia', 'jumbo', 'disco',
        'vea', 'walmart', 'changomas', 'almacen', 'verduleria',
    ],
    'Comida': [
        'restaurante', 'resto', 'rappi', 'pedidosya', 'mcdonalds', 'burger',
        'cafe', 'cafeteria', 'pizza', 'pizzeria', 'comida', 'panaderia', 'bar',
    ],
    'Transporte': [
        'uber', 'cabify', 'didi', 'taxi', 'sube', 'nafta', 'combustible', 'ypf',
        'shell', 'axion', 'peaje', 'estacionamiento', 'colectivo', 'tren', 'subte',
    ],
    'Salud': [
        'farmacia', 'farmacity', 'medico', 'clinica', 'hospital', 'osde',
        'swiss', 'galeno', 'dentista', 'odontologia', 'laboratorio', 'salud',
    ],
    'Ocio': [
        'netflix', 'spotify', 'disney', 'hbo', 'cine', 'cinemark', 'teatro',
        'steam', 'playstation', 'xbox', 'entradas', 'recital',
    ],
    'Servicios': [
        'luz', 'gas', 'agua', 'internet', 'telefono', 'movistar', 'personal',
        'claro', 'edenor', 'edesur', 'metrogas', 'aysa', 'telecentro', 'fibertel',
        'alquiler', 'expensas', 'seguro',
    ],
}


def default_categories() -> List[Category]:
    return [Category(**entry) for entry in DEFAULT_CATEGORIES]


def strip_accents(text: str) -> str:
    normalized = unicodedata.normalize('NFKD', text)
    return ''.join(ch for ch in normalized if not unicodedata.combining(ch))


def _compile(keywords: Dict[str, List[str]]) -> Dict[str, re.Pattern]:
    return {
        category: re.compile(r"\b(" + "|".join(re.escape(k) for k in words) + r")\b")
        for category, words in keywords.items()
        if words
    }


_COMPILED_KEYWORDS = _compile(CATEGORY_KEYWORDS)


def categorize_transaction(
    description: Optional[str],
    keywords: Optional[Dict[str, List[str]]] = None,
    fallback: str = FALLBACK_CATEGORY,
) -> str:
    """Pick a category for a bank movement from its description.

    Example:
        >>> categorize_transaction('COMPRA CARREFOUR EXPRESS 123')
        'Supermercado'
        >>> categorize_transaction('TRANSFERENCIA A TERCEROS')
        'Otros'
    """
    if not description:
        return fallback
    haystack = strip_accents(str(description)).lower()
    patterns = _COMPILED_KEYWORDS if keywords is None else _compile(keywords)
    for category, pattern in patterns.items():
        if pattern.search(haystack):
            return category
    return fallback
