"""Composition root.

Builds the store, ledger, aggregator and CSV engine once and hands them out
together.  Callers receive the pieces they need explicitly; nothing in the
package looks them up globally.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from .aggregator import LedgerAggregator
from .csv_interchange import CSVInterchange
from .db import LedgerStore
from .ledger import Ledger


@dataclass
class FinznApp:
    store: LedgerStore
    ledger: Ledger
    aggregator: LedgerAggregator
    csv: CSVInterchange


def build_app(
    db_path: Optional[str] = None,
    user_id: Optional[str] = None,
    load: bool = True,
    today: Optional[date] = None,
) -> FinznApp:
    """Wire a ready-to-use application for one user.

    Example:
        >>> app = build_app(db_path='/tmp/finzn.db', user_id='ana')
        >>> app.aggregator.calculate_balance('2024-05').available
        0.0
    """
    store = LedgerStore(db_path=db_path, user_id=user_id)
    store.init_db()
    ledger = Ledger(store=store, today=today)
    if load:
        ledger.load()
    return FinznApp(
        store=store,
        ledger=ledger,
        aggregator=LedgerAggregator(ledger),
        csv=CSVInterchange(ledger),
    )
